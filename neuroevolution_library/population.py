# neuroevolution_library/population.py
import dataclasses
import enum
import math

import numpy as np
from loguru import logger
from neat.reporting import ReporterSet

from .exceptions import SuspectedCorruptFitness
from .genome import NetworkGenome, make_rng
from .operators import crossover, diversity, mutate, tournament_select, tournament_size_for


def check_fitness_batch(values, tolerance):
    """
    Raises SuspectedCorruptFitness when a batch of two or more finite fitness
    values is identical (within `tolerance`) and non-zero. Genuinely equal
    scores that large almost always mean the environment reported a shared
    stale value. An all-zero batch is accepted.
    """
    values = np.asarray(values, dtype=float)
    if values.size < 2 or not np.isfinite(values).all():
        return
    if float(values.max() - values.min()) <= tolerance and abs(float(values[0])) > tolerance:
        raise SuspectedCorruptFitness(f"all {values.size} agents scored {values[0]:g}")


class PopulationState(enum.Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    RANKED = "ranked"
    REPRODUCING = "reproducing"


@dataclasses.dataclass
class GenerationStats:
    """What happened during one generation cycle."""
    generation: int
    best_fitness: float
    mean_fitness: float
    median_fitness: float
    worst_fitness: float
    best_fitness_ever: float
    diversity: float
    stagnating: bool
    tournament_size: int
    mutation_rate: float
    improved: bool = False
    diversity_replacements: int = 0
    sanitized_fitness: int = 0
    quarantined: bool = False
    recipes: dict = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class PopulationSnapshot:
    """Read-only view for display and reporting layers."""
    generation: int
    population_size: int
    best_fitness_ever: float
    fitness_history: tuple
    mutation_rate: float
    state: str


class PopulationManager:
    """
    Owns the ordered population and runs one generation cycle at a time:
    rank -> elitism -> reproduce -> diversify -> reset fitness.

    Reproduction reads the ranked previous generation and writes a new list,
    which replaces `population` in a single assignment at the end of `evolve`.
    """

    def __init__(self, config, rng=None, checkpointer=None, reporters=None, population=None):
        """
        Args:
            config (EvolutionConfig): Tunables shared with the operators.
            rng (numpy.random.Generator, optional): Randomness source; seeded from config.seed if omitted.
            checkpointer (codec.Checkpointer, optional): Receives best-genome snapshots.
            reporters (neat.reporting.ReporterSet, optional): Progress listeners.
            population (list of NetworkGenome, optional): Starting genomes instead of random ones.
        """
        self.config = config
        self.rng = rng if rng is not None else make_rng(config.seed)
        self.checkpointer = checkpointer
        self.reporters = reporters if reporters is not None else ReporterSet()

        if population is None:
            population = [self.new_random_genome() for _ in range(config.population_size)]
        if len(population) != config.population_size:
            raise ValueError(f"Expected {config.population_size} genomes, got {len(population)}")
        self.population = list(population)

        self.generation = 0
        self.state = PopulationState.IDLE
        self.fitness_history = []
        self.stats_history = []
        self.best_genome_ever = None
        self.mutation_rate = config.mutation_rate
        self._pending_rerandomize = 0
        self._last_sanitized = 0

    # ------------------------------------------------------------------ helpers

    def new_random_genome(self):
        return NetworkGenome.random(self.config.layer_sizes, self.rng,
                                    hidden_activation=self.config.hidden_activation)

    def _mutate(self, genome, rate, strength):
        c = self.config
        return mutate(genome, min(1.0, rate), strength, self.rng,
                      clamp=c.parameter_clamp,
                      major_probability=c.major_mutation_probability,
                      major_rate_factor=c.major_mutation_rate_factor,
                      major_strength_factor=c.major_mutation_strength_factor)

    @property
    def tournament_size(self):
        return tournament_size_for(self.generation, self.config)

    @property
    def best_fitness_ever(self):
        return self.best_genome_ever.fitness if self.best_genome_ever is not None else float('-inf')

    def snapshot(self):
        return PopulationSnapshot(
            generation=self.generation,
            population_size=len(self.population),
            best_fitness_ever=self.best_fitness_ever,
            fitness_history=tuple(self.fitness_history),
            mutation_rate=self.mutation_rate,
            state=self.state.value,
        )

    # --------------------------------------------------------------- lifecycle

    def seed_from(self, genome):
        """
        Rebuilds the population around a loaded genome.

        Slot 0 gets an exact copy clipped to the parameter clamp; the others
        get copies mutated with linearly increasing intensity so the population
        starts near, but not on, the loaded solution. Returns False if the genome's shape does not fit.
        """
        if tuple(genome.layer_sizes) != tuple(self.config.layer_sizes):
            logger.warning("Seed genome shape {} differs from configured {}, ignoring it",
                           list(genome.layer_sizes), list(self.config.layer_sizes))
            return False
        base = genome.clone()
        clipped = base.clamp(self.config.parameter_clamp)
        if clipped:
            logger.warning("Clipped {} seed parameters into +/-{:g}", clipped, self.config.parameter_clamp)
        size = self.config.population_size
        seeded = [base]
        for i in range(1, size):
            intensity = i / size
            variant = base.clone()
            self._mutate(variant, 0.1 + intensity * 0.4, 0.1 + intensity * 0.3)
            seeded.append(variant)
        self.population = seeded
        return True

    def begin_evaluation(self):
        """Zeroes every fitness and marks the population as under evaluation."""
        for genome in self.population:
            genome.fitness = 0.0
        self.state = PopulationState.EVALUATING
        self.reporters.start_generation(self.generation)

    def assign_fitness(self, records):
        """Writes EvaluationRecord fitness values back into the genomes they belong to."""
        for record in records:
            if 0 <= record.genome_index < len(self.population):
                self.population[record.genome_index].fitness = float(record.fitness)
            else:
                logger.warning("Evaluation record for unknown genome index {}", record.genome_index)

    def is_poisoned(self, value):
        return any(abs(value - sentinel) <= self.config.poisoned_fitness_tolerance
                   for sentinel in self.config.poisoned_fitness_values)

    def sanitize_fitness(self):
        """
        Resets corrupt fitness values to 0: NaN/Infinity, absurdly large
        magnitudes and known poisoned sentinels.

        A sentinel shared by several genomes points at a shared upstream bug,
        so that case quarantines the whole batch instead.

        Returns:
            int: Number of genomes whose fitness was reset.
        """
        reset = 0
        poisoned = [g for g in self.population if math.isfinite(g.fitness) and self.is_poisoned(g.fitness)]
        if len(poisoned) > 1:
            self.quarantine_fitness(f"sentinel fitness {poisoned[0].fitness} on {len(poisoned)} genomes")
            return len(self.population)

        for genome in self.population:
            value = genome.fitness
            if not math.isfinite(value) or abs(value) > self.config.max_plausible_fitness or self.is_poisoned(value):
                genome.fitness = 0.0
                reset += 1
        if reset:
            logger.warning("Reset {} corrupt fitness value(s) to 0 before ranking", reset)
        return reset

    def quarantine_fitness(self, reason):
        """
        Drops the whole batch's fitness and schedules part of the population
        for re-randomization at the end of this cycle.
        """
        logger.warning("Suspected corrupt fitness ({}): resetting all fitness and re-randomizing part of the population",
                       reason)
        for genome in self.population:
            genome.fitness = 0.0
        self._pending_rerandomize = max(
            self._pending_rerandomize,
            max(1, int(self.config.diversity_replace_fraction * self.config.population_size)))

    def rank(self):
        """Sanitizes fitness and returns the population sorted best first."""
        self._last_sanitized = self.sanitize_fitness()
        self.state = PopulationState.RANKED
        return sorted(self.population, key=lambda g: g.fitness, reverse=True)

    def is_stagnating(self, current_best):
        """
        True once `stagnation_threshold` generations have completed and
        `current_best` beats the mean of the last that many bests by no more
        than the relative margin.
        """
        window = self.config.stagnation_threshold
        if len(self.fitness_history) < window:
            return False
        recent_mean = float(np.mean(self.fitness_history[-window:]))
        return current_best - recent_mean <= self.config.stagnation_margin * abs(recent_mean)

    # --------------------------------------------------------------- evolution

    def evolve(self):
        """
        Runs one full generation cycle on the current fitness values.

        Returns:
            GenerationStats: Summary of the generation that just ended.
        """
        c = self.config
        ranked = self.rank()
        sanitized = self._last_sanitized
        quarantined = self._pending_rerandomize > 0

        fitnesses = np.array([g.fitness for g in ranked])
        best = ranked[0]
        improved = self._update_best_ever(best)
        stagnating = self.is_stagnating(best.fitness)
        self.fitness_history.append(float(best.fitness))
        self.reporters.post_evaluate(c, self.population, None, best)

        if improved or (self.generation > 0 and self.generation % c.checkpoint_interval == 0):
            self._checkpoint_best()

        rate, strength, radical_probability = self.mutation_rate, c.mutation_strength, c.radical_mutation_probability
        if stagnating:
            rate *= c.stagnation_rate_factor
            strength *= c.stagnation_strength_factor
            radical_probability = min(1.0, radical_probability * c.stagnation_radical_factor)
            self.reporters.info(f"Fitness stagnating at {best.fitness:.3f}, boosting mutation for this generation")

        self.state = PopulationState.REPRODUCING
        t_size = self.tournament_size
        next_population = [genome.clone() for genome in ranked[:c.elite_count]]
        recipes = {"crossover": 0, "clone": 0, "random": 0, "radical": 0}
        regularize = c.regularize_interval > 0 and self.generation > 0 and \
            self.generation % c.regularize_interval == 0
        while len(next_population) < c.population_size:
            child = self._reproduce(ranked, t_size, rate, strength, radical_probability, recipes)
            if regularize:
                child.regularize(c.regularize_rate)
            next_population.append(child)

        population_diversity = diversity(next_population, c.diversity_sample_pairs,
                                         c.diversity_gene_threshold, self.rng)
        replacements = self._repair_diversity(next_population, population_diversity)

        for genome in next_population:
            genome.fitness = 0.0
        self.population = next_population

        stats = GenerationStats(
            generation=self.generation,
            best_fitness=float(best.fitness),
            mean_fitness=float(fitnesses.mean()),
            median_fitness=float(np.median(fitnesses)),
            worst_fitness=float(fitnesses[-1]),
            best_fitness_ever=self.best_fitness_ever,
            diversity=population_diversity,
            stagnating=stagnating,
            tournament_size=t_size,
            mutation_rate=self.mutation_rate,
            improved=improved,
            diversity_replacements=replacements,
            sanitized_fitness=sanitized,
            quarantined=quarantined,
            recipes=recipes,
        )
        self.stats_history.append(stats)

        self.mutation_rate = max(c.min_mutation_rate, self.mutation_rate * c.mutation_decay)
        self.generation += 1
        self.state = PopulationState.IDLE
        self.reporters.end_generation(c, self.population, None)
        return stats

    def _reproduce(self, ranked, t_size, rate, strength, radical_probability, recipes):
        c = self.config
        roll = self.rng.random()
        if roll < c.crossover_recipe_probability:
            parent_a = tournament_select(ranked, t_size, self.rng)
            parent_b = tournament_select(ranked, t_size, self.rng)
            child = crossover(parent_a, parent_b, self.rng,
                              neuronwise_probability=c.neuronwise_crossover_probability,
                              interpolation_probability=c.interpolation_probability)
            self._mutate(child, rate, strength)
            recipes["crossover"] += 1
        elif roll < c.crossover_recipe_probability + c.clone_recipe_probability:
            child = tournament_select(ranked, t_size, self.rng).clone()
            self._mutate(child, rate * c.clone_mutation_factor, strength * c.clone_mutation_factor)
            recipes["clone"] += 1
        else:
            child = self.new_random_genome()
            recipes["random"] += 1

        if self.rng.random() < radical_probability:
            self._mutate(child, c.radical_mutation_rate, c.radical_mutation_strength)
            recipes["radical"] += 1

        problems = child.validate()
        if problems:
            logger.warning("Offspring failed validation ({}), replacing with a fresh genome", problems[0])
            child = self.new_random_genome()
        child.fitness = 0.0
        return child

    def _repair_diversity(self, next_population, population_diversity):
        """Replaces the tail (lowest-ranked, never elites) with fresh genomes when diversity collapses."""
        c = self.config
        count = self._pending_rerandomize
        self._pending_rerandomize = 0
        if population_diversity < c.diversity_floor:
            count = max(count, max(1, int(round(c.diversity_replace_fraction * c.population_size))))
            self.reporters.info(
                f"Diversity {population_diversity:.1%} below floor {c.diversity_floor:.0%}, "
                f"re-randomizing {count} genomes")
        count = min(count, c.population_size - c.elite_count)
        for offset in range(1, count + 1):
            next_population[-offset] = self.new_random_genome()
        return count

    def _update_best_ever(self, best):
        if self.best_genome_ever is not None and not best.fitness > self.best_genome_ever.fitness:
            return False
        snapshot = best.clone()
        snapshot.fitness = best.fitness
        self.best_genome_ever = snapshot
        return True

    def _checkpoint_best(self):
        if self.checkpointer is None or self.best_genome_ever is None:
            return None
        return self.checkpointer.submit(self.best_genome_ever, self.generation)
