# neuroevolution_library/codec.py
"""
Portable JSON form of a genome, checkpoint filenames and the background writer.

A persisted genome looks like::

    {
      "layers": [4, 8, 2],
      "fitness": 12.5,
      "weights": [[[...], ...], ...],
      "biases": [[...], ...]
    }

Checkpoint files are named ``<tag>_gen<generation>_fit<fitness>.<ext>`` so a
directory listing alone tells which file to resume from.
"""
from concurrent.futures import ThreadPoolExecutor, wait
import glob
import json
import math
import os
import re
import tempfile
import threading

import numpy as np
from loguru import logger

from .config import CHECKPOINT_EXTENSION, HIDDEN_ACTIVATION, LOAD_POLICIES, PARAMETER_CLAMP
from .exceptions import GenomeFormatError, ResourceUnavailable, StructuralMismatch
from .genome import NetworkGenome
from .logging_setup import numeric_anomaly_log

_CHECKPOINT_NAME = re.compile(
    r"^(?P<tag>.+)_gen(?P<generation>\d+)_fit(?P<fitness>-?\d+(?:\.\d+)?)\.(?P<ext>\w+)$")


def _finite_list(array):
    return np.where(np.isfinite(array), array, 0.0).tolist()


def encode(genome):
    """Genome to a plain dict of lists. Non-finite values are written as 0."""
    fitness = genome.fitness if math.isfinite(genome.fitness) else 0.0
    return {
        "layers": list(genome.layer_sizes),
        "fitness": fitness,
        "weights": [_finite_list(w) for w in genome.weights],
        "biases": [_finite_list(b) for b in genome.biases],
    }


def decode(data, hidden_activation=HIDDEN_ACTIVATION, clamp=PARAMETER_CLAMP):
    """
    Dict to genome, validating structure on the way.

    Non-finite parameters are replaced with 0 and reported once; parameters
    outside [-clamp, clamp] are clipped into range.

    Raises:
        GenomeFormatError: If a key is missing or any shape is inconsistent.
    """
    if not isinstance(data, dict):
        raise GenomeFormatError(f"Expected a JSON object, got {type(data).__name__}")
    missing = [key for key in ("layers", "weights", "biases") if key not in data]
    if missing:
        raise GenomeFormatError(f"Missing key(s): {', '.join(missing)}")

    layers = data["layers"]
    if not isinstance(layers, list) or len(layers) < 2:
        raise GenomeFormatError(f"'layers' must list at least 2 sizes, got {layers!r}")
    if not all(isinstance(size, int) and not isinstance(size, bool) and size > 0 for size in layers):
        raise GenomeFormatError(f"Layer sizes must be positive integers, got {layers!r}")
    if not isinstance(data["weights"], list) or not isinstance(data["biases"], list):
        raise GenomeFormatError("'weights' and 'biases' must be lists")

    try:
        fitness = float(data.get("fitness", 0.0))
    except (TypeError, ValueError):
        fitness = 0.0
    if not math.isfinite(fitness):
        fitness = 0.0

    try:
        genome = NetworkGenome(layers, data["weights"], data["biases"], fitness=fitness,
                               hidden_activation=hidden_activation)
    except StructuralMismatch as e:
        raise GenomeFormatError(str(e)) from e

    replaced = genome.sanitize()
    if replaced:
        logger.warning("Replaced {} non-finite parameters in loaded genome with 0", replaced)
    clipped = genome.clamp(clamp)
    if clipped:
        numeric_anomaly_log.warning("Clipped {} out-of-range parameters in loaded genome to +/-{:g}", clipped, clamp)
    return genome


def serialize(genome):
    return json.dumps(encode(genome), indent=2)


def deserialize(text, hidden_activation=HIDDEN_ACTIVATION, clamp=PARAMETER_CLAMP):
    """JSON text to genome. Raises GenomeFormatError on malformed text or structure."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise GenomeFormatError(f"Not valid JSON: {type(e).__name__}: {e}") from e
    return decode(data, hidden_activation, clamp)


def checkpoint_name(tag, generation, fitness, ext=CHECKPOINT_EXTENSION):
    fitness = fitness if math.isfinite(fitness) else 0.0
    return f"{tag}_gen{int(generation)}_fit{fitness:.2f}.{ext}"


def parse_checkpoint_name(filename):
    """Returns (tag, generation, fitness) for a checkpoint filename, or None."""
    match = _CHECKPOINT_NAME.match(os.path.basename(filename))
    if not match:
        return None
    return match.group("tag"), int(match.group("generation")), float(match.group("fitness"))


def save(genome, directory, tag, generation, ext=CHECKPOINT_EXTENSION):
    """
    Writes `genome` to `directory` under its provenance filename.

    The file is written to a temporary name first and renamed into place, so a
    reader never sees a half-written checkpoint.

    Returns:
        str: Path of the written file.

    Raises:
        ResourceUnavailable: If the directory cannot be created or the write fails.
    """
    path = os.path.join(directory, checkpoint_name(tag, generation, genome.fitness, ext))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix="." + ext)
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(serialize(genome))
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except OSError as e:
        raise ResourceUnavailable(f"Cannot write checkpoint '{path}': {e}") from e
    return path


def load(path, layer_sizes=None, rng=None, hidden_activation=HIDDEN_ACTIVATION, clamp=PARAMETER_CLAMP):
    """
    Reads a checkpoint, falling back to a fresh random genome on any problem.

    Args:
        path (str): Checkpoint file.
        layer_sizes (sequence of int, optional): Expected shape. A file with a
            different shape is rejected. Required for the fallback genome.
        rng (numpy.random.Generator, optional): Source for the fallback genome.
        hidden_activation (str): Activation assigned to the loaded genome.
        clamp (float): Loaded parameters are clipped into [-clamp, clamp].

    Returns:
        NetworkGenome: The loaded genome, or a random one of `layer_sizes`.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            genome = deserialize(f.read(), hidden_activation, clamp)
        if layer_sizes is not None and tuple(genome.layer_sizes) != tuple(layer_sizes):
            raise GenomeFormatError(
                f"Checkpoint shape {list(genome.layer_sizes)} differs from configured {list(layer_sizes)}")
        return genome
    # ValueError covers undecodable bytes (UnicodeDecodeError)
    except (OSError, ValueError, GenomeFormatError) as e:
        if layer_sizes is None:
            raise GenomeFormatError(f"Cannot load '{path}' and no fallback shape given: {e}") from e
        logger.warning("Could not load genome from '{}': {}. Using a fresh random genome.", path, e)
        return NetworkGenome.random(layer_sizes, rng, hidden_activation=hidden_activation)


def find_checkpoints(directory, tag, ext=CHECKPOINT_EXTENSION):
    """Checkpoint files in `directory` whose tag is exactly `tag`."""
    if not os.path.isdir(directory):
        return []
    paths = glob.glob(os.path.join(glob.escape(directory), f"{glob.escape(tag)}_gen*_fit*.{ext}"))
    found = []
    for path in paths:
        parsed = parse_checkpoint_name(path)
        if parsed and parsed[0] == tag:
            found.append(path)
    return sorted(found)


def select_checkpoint(paths, policy="fittest"):
    """
    Picks one checkpoint: the most recently modified (`latest`) or the one with
    the highest encoded fitness (`fittest`). Ties go to the later generation.
    """
    if policy not in LOAD_POLICIES:
        raise ValueError(f"Unknown load policy {policy!r}")
    candidates = [(path, parse_checkpoint_name(path)) for path in paths]
    candidates = [(path, parsed) for path, parsed in candidates if parsed]
    if not candidates:
        return None
    if policy == "latest":
        key = lambda item: (os.path.getmtime(item[0]), item[1][1])
    else:
        key = lambda item: (item[1][2], item[1][1])
    return max(candidates, key=key)[0]


def load_best(directory, tag, layer_sizes, policy="fittest", rng=None,
              hidden_activation=HIDDEN_ACTIVATION, clamp=PARAMETER_CLAMP):
    """Returns (genome, path) for the selected checkpoint, or (None, None) if there is none."""
    path = select_checkpoint(find_checkpoints(directory, tag), policy)
    if path is None:
        return None, None
    return load(path, layer_sizes, rng, hidden_activation, clamp), path


def prune_checkpoints(directory, tag, keep):
    """
    Deletes all but the `keep` most recent checkpoints (by generation) of `tag`.

    The fittest checkpoint is always retained. Returns the deleted paths.
    """
    paths = find_checkpoints(directory, tag)
    if len(paths) <= keep:
        return []
    fittest = select_checkpoint(paths, "fittest")
    by_generation = sorted(paths, key=lambda p: parse_checkpoint_name(p)[1], reverse=True)
    survivors = set(by_generation[:keep])
    survivors.add(fittest)
    removed = []
    for path in by_generation:
        if path in survivors:
            continue
        try:
            os.remove(path)
            removed.append(path)
            logger.debug("Removed old checkpoint {}", os.path.basename(path))
        except OSError as e:
            logger.warning("Could not remove old checkpoint '{}': {}", path, e)
    return removed


def clear_checkpoints(directory, tag):
    """Deletes every checkpoint of `tag`. Returns how many files were removed."""
    removed = 0
    for path in find_checkpoints(directory, tag):
        try:
            os.remove(path)
            removed += 1
        except OSError as e:
            logger.warning("Could not remove checkpoint '{}': {}", path, e)
    return removed


class Checkpointer:
    """
    Best-effort background writer for genome checkpoints.

    `submit` snapshots the genome and returns immediately; the write happens
    on a single worker thread. Failures are logged, never raised, so the
    training loop does not wait on or die from disk problems.
    """

    def __init__(self, directory, tag, max_snapshots=None, ext=CHECKPOINT_EXTENSION):
        self.directory = directory
        self.tag = tag
        self.max_snapshots = max_snapshots
        self.ext = ext
        self.last_path = None
        self.failures = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="checkpoint")
        self._pending = set()
        self._lock = threading.Lock()

    def submit(self, genome, generation, tag=None):
        """Queues a write of a copy of `genome`. Returns the Future of the written path (or None)."""
        snapshot = genome.clone()
        snapshot.fitness = genome.fitness
        future = self._executor.submit(self._write, snapshot, generation, tag or self.tag)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future):
        with self._lock:
            self._pending.discard(future)

    def _write(self, genome, generation, tag):
        try:
            path = save(genome, self.directory, tag, generation, self.ext)
        except ResourceUnavailable as e:
            self.failures += 1
            logger.error("Checkpoint skipped: {}", e)
            return None
        self.last_path = path
        logger.info("Saved checkpoint {} (fitness {:.2f})", os.path.basename(path), genome.fitness)
        if self.max_snapshots and tag == self.tag:
            prune_checkpoints(self.directory, tag, self.max_snapshots)
        return path

    def flush(self, timeout=None):
        """Waits for queued writes. Returns True if none are left pending."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout=None):
        self.flush(timeout)
        self._executor.shutdown(wait=False)
