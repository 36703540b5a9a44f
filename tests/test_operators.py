import numpy as np
import pytest

from neuroevolution_library.config import EvolutionConfig
from neuroevolution_library.genome import NetworkGenome
from neuroevolution_library.operators import (crossover, diversity, gaussian, gene_difference, mutate,
                                              tournament_select, tournament_size_for)


class TestMutation:

    def test_zero_rate_is_a_no_op(self, genome, rng):
        before = genome.clone()
        for strength in (0.0, 1.0, 1e6):
            mutate(genome, rate=0.0, strength=strength, rng=rng, major_probability=1.0)
        assert genome.same_parameters(before)

    def test_mutated_values_stay_clamped(self, genome, rng):
        for _ in range(20):
            mutate(genome, rate=1.0, strength=100.0, rng=rng, clamp=5.0)
            assert np.abs(genome.flat_parameters()).max() <= 5.0

    def test_full_rate_changes_every_gene(self, genome, rng):
        before = genome.flat_parameters()
        mutate(genome, rate=1.0, strength=0.5, rng=rng, major_probability=0.0)
        assert np.all(genome.flat_parameters() != before)

    def test_partial_rate_changes_some_genes(self, rng):
        genome = NetworkGenome.random((20, 20, 2), rng)
        before = genome.flat_parameters()
        mutate(genome, rate=0.1, strength=0.5, rng=rng, major_probability=0.0)
        changed = np.mean(genome.flat_parameters() != before)
        assert 0.03 < changed < 0.2

    def test_major_mutation_reported(self, genome, rng):
        assert mutate(genome, 0.1, 0.1, rng, major_probability=1.0) is True
        assert mutate(genome, 0.1, 0.1, rng, major_probability=0.0) is False

    def test_mutation_keeps_fitness(self, genome, rng):
        genome.fitness = 3.0
        mutate(genome, 0.5, 0.5, rng)
        assert genome.fitness == 3.0


class TestGaussian:

    def test_standard_normal_moments(self, rng):
        samples = gaussian(rng, 200_000)
        assert abs(samples.mean()) < 0.02
        assert abs(samples.std() - 1.0) < 0.02
        assert np.all(np.isfinite(samples))


class TestCrossover:

    def test_child_shape_and_gene_origin(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 8, 2), rng)
        for _ in range(20):
            child = crossover(a, b, rng)
            assert child.layer_sizes == a.layer_sizes
            for ca, pa, pb in zip(child.weights + child.biases, a.weights + a.biases, b.weights + b.biases):
                assert ca.shape == pa.shape
                low, high = np.minimum(pa, pb), np.maximum(pa, pb)
                assert np.all((ca >= low - 1e-12) & (ca <= high + 1e-12))

    def test_pure_inheritance_without_interpolation(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 8, 2), rng)
        child = crossover(a, b, rng, neuronwise_probability=0.0, interpolation_probability=0.0)
        for ca, pa, pb in zip(child.weights, a.weights, b.weights):
            assert np.all((ca == pa) | (ca == pb))

    def test_neuronwise_inherits_whole_rows(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 8, 2), rng)
        child = crossover(a, b, rng, neuronwise_probability=1.0)
        for cw, cb, aw, ab, bw, bb in zip(child.weights, child.biases, a.weights, a.biases, b.weights, b.biases):
            for row in range(cw.shape[0]):
                from_a = np.array_equal(cw[row], aw[row]) and cb[row] == ab[row]
                from_b = np.array_equal(cw[row], bw[row]) and cb[row] == bb[row]
                assert from_a or from_b

    def test_child_fitness_is_parent_mean(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 8, 2), rng)
        a.fitness, b.fitness = 2.0, 6.0
        assert crossover(a, b, rng).fitness == 4.0

    def test_mismatched_parents_fall_back_to_clone(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 6, 2), rng)
        child = crossover(a, b, rng)
        assert child is not a
        assert child.same_parameters(a)

    def test_child_does_not_alias_parents(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = a.clone()
        child = crossover(a, b, rng)
        child.weights[0][...] = 0.0
        assert np.any(a.weights[0] != 0.0)


class TestTournament:

    def test_large_tournament_finds_the_best(self, rng):
        population = [NetworkGenome((2, 2), fitness=f) for f in (1.0, 5.0, 3.0, 2.0, 4.0)]
        assert tournament_select(population, 200, rng).fitness == 5.0

    def test_size_one_is_uniform_pick(self, rng):
        population = [NetworkGenome((2, 2), fitness=f) for f in range(5)]
        picks = {tournament_select(population, 1, rng).fitness for _ in range(200)}
        assert picks == {0.0, 1.0, 2.0, 3.0, 4.0}

    def test_empty_population_raises(self, rng):
        with pytest.raises(ValueError):
            tournament_select([], 3, rng)

    def test_size_schedule(self):
        config = EvolutionConfig(tournament_size_start=3, tournament_size_step=1,
                                 tournament_size_interval=20, tournament_size_max=7)
        assert tournament_size_for(0, config) == 3
        assert tournament_size_for(19, config) == 3
        assert tournament_size_for(20, config) == 4
        assert tournament_size_for(75, config) == 6
        assert tournament_size_for(10_000, config) == 7


class TestDiversity:

    def test_identical_population_has_no_diversity(self, genome, rng):
        population = [genome.clone() for _ in range(10)]
        assert diversity(population, rng=rng) == 0.0

    def test_random_population_is_diverse(self, rng):
        population = [NetworkGenome.random((4, 8, 2), rng) for _ in range(10)]
        assert diversity(population, rng=rng) > 0.5

    def test_tiny_population(self, genome, rng):
        assert diversity([], rng=rng) == 1.0
        assert diversity([genome], rng=rng) == 1.0

    def test_gene_difference(self, genome):
        other = genome.clone()
        assert gene_difference(genome, other) == 0.0
        other.weights[0] += 1.0
        expected = other.weights[0].size / genome.parameter_count
        assert gene_difference(genome, other, threshold=0.05) == pytest.approx(expected)

    def test_gene_difference_of_mismatched_shapes(self, rng):
        a = NetworkGenome.random((4, 8, 2), rng)
        b = NetworkGenome.random((4, 6, 2), rng)
        assert gene_difference(a, b) == 1.0
