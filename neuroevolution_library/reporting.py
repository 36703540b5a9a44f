# neuroevolution_library/reporting.py
"""
Generation progress reporters, plugged into a neat.reporting.ReporterSet.

The engine calls the same hooks neat's own Population does (start_generation,
post_evaluate, end_generation, found_solution, info); `population` is a list
of NetworkGenome here and `species` is always None.
"""
import statistics
import time

from neat.reporting import BaseReporter


class ConsoleReporter(BaseReporter):
    """Prints a short per-generation summary to stdout."""

    def __init__(self, show_timing=True):
        self.show_timing = show_timing
        self.generation = None
        self.generation_start_time = None
        self.generation_times = []

    def start_generation(self, generation):
        self.generation = generation
        print(f"\n ****** Running generation {generation} ****** \n")
        self.generation_start_time = time.time()

    def post_evaluate(self, config, population, species, best_genome):
        fitnesses = [genome.fitness for genome in population]
        fit_mean = statistics.mean(fitnesses)
        fit_std = statistics.stdev(fitnesses) if len(fitnesses) > 1 else 0.0
        print(f"Population's average fitness: {fit_mean:3.5f} stdev: {fit_std:3.5f}")
        print(f"Best fitness: {best_genome.fitness:3.5f} - layers: {list(best_genome.layer_sizes)}")

    def end_generation(self, config, population, species_set):
        if not self.show_timing or self.generation_start_time is None:
            return
        elapsed = time.time() - self.generation_start_time
        self.generation_times.append(elapsed)
        self.generation_times = self.generation_times[-10:]
        average = sum(self.generation_times) / len(self.generation_times)
        if len(self.generation_times) > 1:
            print(f"Generation time: {elapsed:.3f} sec ({average:.3f} average)")
        else:
            print(f"Generation time: {elapsed:.3f} sec")

    def found_solution(self, config, generation, best):
        print(f"\nValidated solution in generation {generation} - fitness {best.fitness:.3f}")

    def info(self, msg):
        print(msg)


class FitnessHistoryReporter(BaseReporter):
    """Keeps per-generation fitness statistics for plotting after a run."""

    def __init__(self):
        self.generations = []
        self.best_fitness = []
        self.mean_fitness = []
        self.median_fitness = []
        self.solutions = []
        self._generation = 0

    def start_generation(self, generation):
        self._generation = generation

    def post_evaluate(self, config, population, species, best_genome):
        fitnesses = [genome.fitness for genome in population]
        self.generations.append(self._generation)
        self.best_fitness.append(best_genome.fitness)
        self.mean_fitness.append(statistics.mean(fitnesses))
        self.median_fitness.append(statistics.median(fitnesses))

    def found_solution(self, config, generation, best):
        self.solutions.append((generation, best.fitness))

    def get_fitness_mean(self):
        return list(self.mean_fitness)

    def get_fitness_best(self):
        return list(self.best_fitness)
