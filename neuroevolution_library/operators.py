# neuroevolution_library/operators.py
import itertools

import numpy as np
from loguru import logger

from .config import (PARAMETER_CLAMP, MAJOR_MUTATION_PROBABILITY, MAJOR_MUTATION_RATE_FACTOR,
                     MAJOR_MUTATION_STRENGTH_FACTOR, NEURONWISE_CROSSOVER_PROBABILITY,
                     INTERPOLATION_PROBABILITY, DIVERSITY_SAMPLE_PAIRS, DIVERSITY_GENE_THRESHOLD)
from .exceptions import StructuralMismatch
from .genome import NetworkGenome, default_rng


def gaussian(rng, size=None):
    """Standard normal samples via the Box-Muller transform."""
    u1 = 1.0 - rng.random(size) # (0, 1], keeps log() finite
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def mutate(genome, rate, strength, rng=None,
           clamp=PARAMETER_CLAMP,
           major_probability=MAJOR_MUTATION_PROBABILITY,
           major_rate_factor=MAJOR_MUTATION_RATE_FACTOR,
           major_strength_factor=MAJOR_MUTATION_STRENGTH_FACTOR):
    """
    Perturbs weights and biases of `genome` in place.

    Each parameter mutates independently with probability `rate` by adding
    Gaussian noise scaled by `strength`; mutated values are clamped to
    [-clamp, clamp]. Once per call, with probability `major_probability`, the
    whole call becomes a major mutation with rate and strength multiplied.

    Returns:
        bool: True if this call was a major mutation.
    """
    rng = rng if rng is not None else default_rng()
    major = rng.random() < major_probability
    if major:
        rate = min(1.0, rate * major_rate_factor)
        strength = strength * major_strength_factor

    for array in genome.weights + genome.biases:
        mask = rng.random(array.shape) < rate
        if not mask.any():
            continue
        noise = gaussian(rng, array.shape) * strength
        mutated = np.clip(array + noise, -clamp, clamp)
        array[mask] = mutated[mask]
    return major


def _check_compatible(parent_a, parent_b):
    if parent_a.layer_sizes != parent_b.layer_sizes:
        raise StructuralMismatch(
            f"Cannot cross {list(parent_a.layer_sizes)} with {list(parent_b.layer_sizes)}")


def crossover(parent_a, parent_b, rng=None,
              neuronwise_probability=NEURONWISE_CROSSOVER_PROBABILITY,
              interpolation_probability=INTERPOLATION_PROBABILITY):
    """
    Recombines two equally shaped parents into a new child.

    Per output neuron, either the whole incoming row and bias come from one
    parent (probability `neuronwise_probability`), or each gene picks a parent
    on its own, with `interpolation_probability` of blending both parents at a
    random mixing factor instead. The child's fitness is the parents' mean;
    callers reset it before evaluation.

    Parents of different shapes never raise: the mismatch is logged and a
    clone of `parent_a` is returned.
    """
    rng = rng if rng is not None else default_rng()
    try:
        _check_compatible(parent_a, parent_b)
    except StructuralMismatch as e:
        logger.warning("{}. Falling back to a clone of the first parent.", e)
        return parent_a.clone()

    child_weights = []
    child_biases = []
    for wa, wb, ba, bb in zip(parent_a.weights, parent_b.weights, parent_a.biases, parent_b.biases):
        n_out, n_in = wa.shape
        neuronwise = rng.random(n_out) < neuronwise_probability
        neuron_from_b = rng.random(n_out) < 0.5

        # Gene-by-gene candidates, used for neurons not inherited whole
        gene_from_b = rng.random((n_out, n_in + 1)) < 0.5
        blend = rng.random((n_out, n_in + 1)) < interpolation_probability
        t = rng.random((n_out, n_in + 1))

        a = np.column_stack([wa, ba])
        b = np.column_stack([wb, bb])
        per_gene = np.where(gene_from_b, b, a)
        per_gene = np.where(blend, a * (1.0 - t) + b * t, per_gene)
        whole_row = np.where(neuron_from_b[:, None], b, a)
        combined = np.where(neuronwise[:, None], whole_row, per_gene)

        child_weights.append(combined[:, :n_in].copy())
        child_biases.append(combined[:, n_in].copy())

    activation = parent_a.hidden_activation if rng.random() < 0.5 else parent_b.hidden_activation
    return NetworkGenome(parent_a.layer_sizes, child_weights, child_biases,
                         fitness=(parent_a.fitness + parent_b.fitness) / 2.0,
                         hidden_activation=activation)


def tournament_select(population, size, rng=None):
    """Best of `size` genomes drawn uniformly with replacement."""
    if not population:
        raise ValueError("Cannot run a tournament on an empty population")
    rng = rng if rng is not None else default_rng()
    contestants = rng.integers(0, len(population), size=max(1, int(size)))
    best = None
    for index in contestants:
        contestant = population[index]
        if best is None or contestant.fitness > best.fitness:
            best = contestant
    return best


def tournament_size_for(generation, config):
    """Tournament size for `generation`: grows by a step every interval up to the cap."""
    grown = config.tournament_size_start + \
        config.tournament_size_step * (generation // config.tournament_size_interval)
    return min(config.tournament_size_max, grown)


def gene_difference(genome_a, genome_b, threshold=DIVERSITY_GENE_THRESHOLD):
    """Fraction of genes differing by more than `threshold`. Differently shaped genomes count as 1.0."""
    if genome_a.layer_sizes != genome_b.layer_sizes:
        return 1.0
    a = genome_a.flat_parameters()
    b = genome_b.flat_parameters()
    with np.errstate(invalid='ignore'):
        differing = np.abs(a - b) > threshold
    return float(differing.mean())


def diversity(population, sample_pairs=DIVERSITY_SAMPLE_PAIRS,
              threshold=DIVERSITY_GENE_THRESHOLD, rng=None):
    """
    Cheap diversity estimate: mean gene_difference over at most `sample_pairs`
    genome pairs. Small populations are compared exhaustively.

    Returns 1.0 for populations with fewer than two genomes.
    """
    n = len(population)
    if n < 2 or sample_pairs < 1:
        return 1.0
    rng = rng if rng is not None else default_rng()

    if n * (n - 1) // 2 <= sample_pairs:
        pairs = list(itertools.combinations(range(n), 2))
    else:
        pairs = []
        for _ in range(sample_pairs):
            i, j = rng.choice(n, size=2, replace=False)
            pairs.append((int(i), int(j)))

    scores = [gene_difference(population[i], population[j], threshold) for i, j in pairs]
    return float(np.mean(scores))
