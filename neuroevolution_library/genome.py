# neuroevolution_library/genome.py
import math

import numpy as np
from neat.activations import ActivationFunctionSet

from .config import HIDDEN_ACTIVATION, INPUT_CLAMP, PRE_ACTIVATION_CLAMP
from .exceptions import NumericAnomaly, StructuralMismatch
from .logging_setup import numeric_anomaly_log

WIDE_INIT_PROBABILITY = 0.3 # Share of fresh genomes drawn from the doubled He range
OUTPUT_BIAS_RANGE = (0.2, 0.5) # Magnitude of fresh output biases, so new controllers move at all
OUTPUT_WEIGHT_BOOST = (1.0, 1.5)


def gelu_activation(z):
    """Sigmoid approximation of GELU: z * sigmoid(1.702 * z)."""
    return z / (1.0 + math.exp(-1.702 * z))


# neat's stock set (sigmoid, tanh, relu, clamped, ...) extended with gelu
_activations = ActivationFunctionSet()
_activations.add('gelu', gelu_activation)


def is_known_activation(name):
    return name in _activations.functions


def make_rng(seed=None):
    """numpy Generator used by every stochastic operation in the engine."""
    return np.random.default_rng(seed)


_default_rng = make_rng()


def default_rng():
    return _default_rng


def adapt_vector(values, size):
    """
    Returns `values` as a float vector of exactly `size` entries.

    Overlapping entries are copied, a longer vector is truncated and a shorter
    one is zero-padded. This is the only place vector lengths are reconciled.
    """
    values = np.asarray(values, dtype=float).ravel()
    if values.size == size:
        return values.copy()
    adapted = np.zeros(size, dtype=float)
    overlap = min(size, values.size)
    adapted[:overlap] = values[:overlap]
    return adapted


class NetworkGenome:
    """
    Parameters of a fixed-shape feedforward network plus its fitness tag.

    `weights[i]` has shape (layer_sizes[i+1], layer_sizes[i]) and `biases[i]`
    has shape (layer_sizes[i+1],). The layer sizes never change after
    construction; reshaping means building a new genome.
    """

    def __init__(self, layer_sizes, weights=None, biases=None, fitness=0.0,
                 hidden_activation=HIDDEN_ACTIVATION):
        """
        Args:
            layer_sizes (sequence of int): Input size, hidden sizes, output size.
            weights (list of array-like, optional): One matrix per transition. Zeros if omitted.
            biases (list of array-like, optional): One vector per transition. Zeros if omitted.
            fitness (float): Initial fitness tag.
            hidden_activation (str): Name of the hidden-layer activation.

        Raises:
            StructuralMismatch: If the layers or parameter shapes are inconsistent.
        """
        try:
            layer_sizes = tuple(int(size) for size in layer_sizes)
        except (TypeError, ValueError) as e:
            raise StructuralMismatch(f"Layer sizes must be integers, got {layer_sizes!r}") from e
        if len(layer_sizes) < 2:
            raise StructuralMismatch(f"A network needs at least 2 layers, got {layer_sizes}")
        if any(size <= 0 for size in layer_sizes):
            raise StructuralMismatch(f"Layer sizes must be positive, got {layer_sizes}")
        if not is_known_activation(hidden_activation):
            raise StructuralMismatch(f"Unknown hidden activation {hidden_activation!r}")

        self._layer_sizes = layer_sizes
        self.hidden_activation = hidden_activation
        self._activation = _activations.get(hidden_activation)
        self.fitness = float(fitness)

        shapes = [(n_out, n_in) for n_in, n_out in zip(layer_sizes[:-1], layer_sizes[1:])]
        if weights is None:
            weights = [np.zeros(shape) for shape in shapes]
        if biases is None:
            biases = [np.zeros(shape[0]) for shape in shapes]
        if len(weights) != len(shapes) or len(biases) != len(shapes):
            raise StructuralMismatch(
                f"Expected {len(shapes)} weight matrices and bias vectors, "
                f"got {len(weights)} and {len(biases)}")

        self.weights = []
        self.biases = []
        for i, (shape, w, b) in enumerate(zip(shapes, weights, biases)):
            try:
                w = np.array(w, dtype=float)
                b = np.array(b, dtype=float)
            except (TypeError, ValueError) as e:
                raise StructuralMismatch(f"Transition {i} holds non-numeric parameters") from e
            if w.shape != shape:
                raise StructuralMismatch(f"Transition {i} weights have shape {w.shape}, expected {shape}")
            if b.shape != (shape[0],):
                raise StructuralMismatch(f"Transition {i} biases have shape {b.shape}, expected {(shape[0],)}")
            self.weights.append(w)
            self.biases.append(b)

    @classmethod
    def random(cls, layer_sizes, rng=None, hidden_activation=HIDDEN_ACTIVATION):
        """
        Builds a genome with He-style uniform weights.

        About a third of fresh genomes use a doubled weight range and wider
        biases. Output biases are pushed away from zero and output weights
        boosted slightly so a brand-new controller produces visible actions.
        """
        rng = rng if rng is not None else default_rng()
        genome = cls(layer_sizes, hidden_activation=hidden_activation)
        wide = rng.random() < WIDE_INIT_PROBABILITY
        for w, b in zip(genome.weights, genome.biases):
            fan_in = w.shape[1]
            he = math.sqrt(2.0 / fan_in) * (2.0 if wide else 1.0)
            w[...] = rng.uniform(-he, he, w.shape)
            bias_range = 1.0 if wide else 0.5
            b[...] = rng.uniform(-bias_range, bias_range, b.shape)

        out_w, out_b = genome.weights[-1], genome.biases[-1]
        signs = rng.choice([-1.0, 1.0], out_b.shape)
        out_b[...] = rng.uniform(*OUTPUT_BIAS_RANGE, out_b.shape) * signs
        out_w *= rng.uniform(*OUTPUT_WEIGHT_BOOST, out_w.shape)
        return genome

    @property
    def layer_sizes(self):
        return self._layer_sizes

    @property
    def input_size(self):
        return self._layer_sizes[0]

    @property
    def output_size(self):
        return self._layer_sizes[-1]

    @property
    def parameter_count(self):
        return sum(w.size + b.size for w, b in zip(self.weights, self.biases))

    def clone(self):
        """Deep copy with fitness reset to 0."""
        return NetworkGenome(self._layer_sizes,
                             [w.copy() for w in self.weights],
                             [b.copy() for b in self.biases],
                             fitness=0.0,
                             hidden_activation=self.hidden_activation)

    def same_parameters(self, other):
        if self._layer_sizes != other.layer_sizes:
            return False
        return all(np.array_equal(a, b) for a, b in zip(self.weights, other.weights)) and \
            all(np.array_equal(a, b) for a, b in zip(self.biases, other.biases))

    def flat_parameters(self):
        """Every weight followed by every bias, transition by transition, as one vector."""
        parts = [w.ravel() for w in self.weights] + [b.ravel() for b in self.biases]
        return np.concatenate(parts)

    def forward(self, inputs):
        """
        Maps an observation to an action vector of `output_size` entries in [-1, 1].

        Mis-sized observations are truncated or zero-padded, non-finite entries
        become 0 and everything is clamped before use. Never raises: an internal
        failure yields a zero vector.
        """
        try:
            return self._forward(inputs)
        except NumericAnomaly as e:
            numeric_anomaly_log.warning("{}, returning zeros", e)
            return np.zeros(self.output_size)
        except Exception as e:
            numeric_anomaly_log.warning("Forward pass failed ({}: {}), returning zeros", type(e).__name__, e)
            return np.zeros(self.output_size)

    def _forward(self, inputs):
        values = np.asarray(inputs, dtype=float).ravel()
        if values.size != self.input_size:
            numeric_anomaly_log.warning("Input size mismatch: expected {}, got {}. Adapting.",
                                        self.input_size, values.size)
        x = adapt_vector(values, self.input_size)

        finite = np.isfinite(x)
        if not finite.all():
            numeric_anomaly_log.warning("Network received {} non-finite inputs, replacing with 0",
                                        int(x.size - finite.sum()))
            x = np.where(finite, x, 0.0)
        x = np.clip(x, -INPUT_CLAMP, INPUT_CLAMP)

        last = len(self.weights) - 1
        for index, (w, b) in enumerate(zip(self.weights, self.biases)):
            with np.errstate(over='ignore', invalid='ignore'):
                terms = w * x
                bad = ~np.isfinite(terms)
                if bad.any():
                    numeric_anomaly_log.warning("Skipping {} non-finite terms in layer {}", int(bad.sum()), index)
                    terms[bad] = 0.0
                b = np.where(np.isfinite(b), b, 0.0)
                sums = b + terms.sum(axis=1)
            # inf - inf; infinities are clipped below
            sums = np.where(np.isnan(sums), 0.0, sums)
            sums = np.clip(sums, -PRE_ACTIVATION_CLAMP, PRE_ACTIVATION_CLAMP)
            if index == last:
                x = np.clip(sums, -1.0, 1.0)
            else:
                x = np.fromiter((self._activation(z) for z in sums), dtype=float, count=sums.size)

        if not np.isfinite(x).all():
            raise NumericAnomaly("Network produced invalid outputs")
        return x

    def validate(self):
        """Returns a list of problems found in the parameters (empty when healthy)."""
        problems = []
        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            expected = (self._layer_sizes[i + 1], self._layer_sizes[i])
            if w.shape != expected:
                problems.append(f"transition {i}: weights shape {w.shape} != {expected}")
            if b.shape != (expected[0],):
                problems.append(f"transition {i}: biases shape {b.shape} != {(expected[0],)}")
            bad_w = int(np.size(w) - np.isfinite(w).sum())
            bad_b = int(np.size(b) - np.isfinite(b).sum())
            if bad_w:
                problems.append(f"transition {i}: {bad_w} non-finite weights")
            if bad_b:
                problems.append(f"transition {i}: {bad_b} non-finite biases")
        return problems

    def sanitize(self):
        """Replaces non-finite parameters with 0 in place. Returns how many were replaced."""
        replaced = 0
        for array in self.weights + self.biases:
            bad = ~np.isfinite(array)
            count = int(bad.sum())
            if count:
                array[bad] = 0.0
                replaced += count
        return replaced

    def clamp(self, limit):
        """Clips every parameter into [-limit, limit] in place. Returns how many were out of range."""
        clipped = 0
        for array in self.weights + self.biases:
            outside = np.abs(array) > limit
            count = int(outside.sum())
            if count:
                np.clip(array, -limit, limit, out=array)
                clipped += count
        return clipped

    def regularize(self, rate):
        """Shrinks every parameter by the factor (1 - rate)."""
        for array in self.weights + self.biases:
            array *= (1.0 - rate)

    def __repr__(self):
        layers = "-".join(str(size) for size in self._layer_sizes)
        return f"NetworkGenome([{layers}], fitness={self.fitness:.2f}, activation={self.hidden_activation})"
