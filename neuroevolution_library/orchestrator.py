# neuroevolution_library/orchestrator.py
from concurrent.futures import ThreadPoolExecutor
import enum
import math
import threading

from loguru import logger
from neat.reporting import ReporterSet

from . import codec
from .config import MIN_TIME_SCALE, MAX_TIME_SCALE
from .exceptions import SuspectedCorruptFitness
from .genome import NetworkGenome, make_rng
from .population import PopulationManager, check_fitness_batch


class OrchestratorState(enum.Enum):
    SPAWNING = "spawning"
    EVALUATING = "evaluating"
    EARLY_CHECK = "early_check"
    SCORING = "scoring"
    EVOLVING = "evolving"


class GenerationOrchestrator:
    """
    Drives the generation loop against an Environment:
    spawn -> evaluate (with early checks) -> score -> evolve -> spawn ...

    There is no terminal state. The loop runs until `stop()` is called or a
    generation limit given to `run()` is reached. Control methods (`stop`,
    `force_advance`, `request_checkpoint`, `set_time_scale`, `reset`) may be
    called from any thread; they take effect at the next tick or generation
    boundary.
    """

    def __init__(self, environment, config, population=None, checkpointer=None,
                 reporters=None, rng=None):
        """
        Args:
            environment (Environment): Simulates the agents.
            config (EvolutionConfig): Validated here; a bad config raises ConfigurationError.
            population (PopulationManager, optional): Built from `config` if omitted.
            checkpointer (codec.Checkpointer, optional): Background writer for best genomes.
            reporters (neat.reporting.ReporterSet, optional): Progress listeners.
            rng (numpy.random.Generator, optional): Shared randomness source.
        """
        self.config = config.validate()
        self.environment = environment
        self.rng = rng if rng is not None else make_rng(config.seed)
        self.reporters = reporters if reporters is not None else ReporterSet()
        self.checkpointer = checkpointer
        self.population = population if population is not None else PopulationManager(
            config, self.rng, checkpointer, self.reporters)

        self.state = OrchestratorState.SPAWNING
        self.time_scale = config.time_scale
        self.last_termination = None
        self.last_evaluation_time = 0.0
        self.validations_passed = 0

        self._stop_event = threading.Event()
        self._advance_event = threading.Event()
        self._reset_event = threading.Event()
        self._thread = None
        self._pool = ThreadPoolExecutor(max_workers=config.parallel_workers,
                                        thread_name_prefix="forward") if config.parallel_workers > 0 else None

    # ------------------------------------------------------------- control ops

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    @property
    def generation(self):
        return self.population.generation

    def start(self, max_generations=None, resume=False):
        """Runs the loop on a background thread and returns immediately."""
        if self.is_running:
            logger.warning("Orchestrator already running")
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, args=(max_generations, resume),
                                        name="generation-loop", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout=None):
        """Asks the loop to stop at the next tick or generation boundary and waits for it."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def force_advance(self):
        """Ends the current evaluation at the next tick; scoring and evolution still run."""
        self._advance_event.set()

    def request_checkpoint(self):
        """
        Queues a save of the best genome seen so far.

        Returns:
            concurrent.futures.Future or None: The pending write, if one was queued.
        """
        genome = self.population.best_genome_ever
        if self.checkpointer is None:
            logger.warning("Checkpoint requested but no checkpointer is configured")
            return None
        if genome is None:
            logger.info("Checkpoint requested before any generation finished, nothing to save yet")
            return None
        return self.checkpointer.submit(genome, self.population.generation)

    def set_time_scale(self, factor):
        """Sets the simulated-time multiplier, clamped to [MIN_TIME_SCALE, MAX_TIME_SCALE]. Returns the applied value."""
        try:
            factor = float(factor)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric time scale {!r}", factor)
            return self.time_scale
        if not math.isfinite(factor):
            logger.warning("Ignoring non-finite time scale {}", factor)
            return self.time_scale
        self.time_scale = min(MAX_TIME_SCALE, max(MIN_TIME_SCALE, factor))
        return self.time_scale

    def reset(self):
        """
        Deletes this run's checkpoints and restarts from a fresh random
        population. While the loop is running this happens before the next spawn.
        """
        if self.is_running:
            self._reset_event.set()
        else:
            self._reset()

    def _reset(self):
        self._reset_event.clear()
        if self.checkpointer is not None:
            self.checkpointer.flush(timeout=10)
        removed = codec.clear_checkpoints(self.config.checkpoint_dir, self.config.checkpoint_tag)
        self.population = PopulationManager(self.config, self.rng, self.checkpointer, self.reporters)
        self.validations_passed = 0
        logger.info("Training reset: removed {} checkpoint(s), fresh population of {}",
                    removed, self.config.population_size)

    def resume(self):
        """
        Seeds the population from the checkpoint chosen by the configured load
        policy and continues generation numbering from it.

        Returns:
            str or None: Path of the checkpoint used.
        """
        c = self.config
        genome, path = codec.load_best(c.checkpoint_dir, c.checkpoint_tag, c.layer_sizes,
                                       c.load_policy, self.rng, c.hidden_activation, c.parameter_clamp)
        if genome is None:
            logger.info("No '{}' checkpoint in '{}', starting from a random population",
                        c.checkpoint_tag, c.checkpoint_dir)
            return None
        if not self.population.seed_from(genome):
            return None
        parsed = codec.parse_checkpoint_name(path)
        if parsed:
            self.population.generation = parsed[1]
        logger.info("Resumed from {} ({} policy)", path, c.load_policy)
        return path

    def close(self):
        self.stop()
        if self._pool is not None:
            self._pool.shutdown(wait=True)
        if self.checkpointer is not None:
            self.checkpointer.close(timeout=30)

    # ------------------------------------------------------------------ loop

    def run(self, max_generations=None, resume=False):
        """
        Runs generations until stopped or `max_generations` have completed.

        Returns:
            list of GenerationStats: One entry per completed generation.
        """
        if resume:
            self.resume()
        completed = []
        while not self._stop_event.is_set():
            if max_generations is not None and len(completed) >= max_generations:
                break
            if self._reset_event.is_set():
                self._reset()
            stats = self.run_generation()
            if stats is None:
                break
            completed.append(stats)
        logger.info("Generation loop finished after {} generation(s)", len(completed))
        return completed

    def run_generation(self):
        """
        One full Spawning -> Evaluating -> Scoring -> Evolving pass.

        Returns:
            GenerationStats or None: None if a stop request abandoned the generation.
        """
        if self._stop_event.is_set():
            return None
        c = self.config

        self.state = OrchestratorState.SPAWNING
        genomes = list(self.population.population)
        self.environment.spawn(len(genomes))
        self.population.begin_evaluation()

        reason, elapsed = self._evaluate(genomes, check_thresholds=True)
        self.last_termination = reason
        self.last_evaluation_time = elapsed
        if reason == "stopped":
            self.environment.teardown()
            logger.info("Stop requested, abandoning generation {}", self.population.generation)
            return None
        if reason != "budget":
            logger.debug("Generation {} ended early ({}) after {:.2f}s",
                         self.population.generation, reason, elapsed)

        self.state = OrchestratorState.SCORING
        records = self.environment.harvest()
        self.environment.teardown()
        self._score(records)

        self.state = OrchestratorState.EVOLVING
        stats = self.population.evolve()

        if c.validation_interval > 0 and self.population.generation % c.validation_interval == 0:
            self._validate()

        self.state = OrchestratorState.SPAWNING
        return stats

    def _evaluate(self, genomes, check_thresholds):
        """Ticks the environment until the budget runs out or a termination condition fires."""
        c = self.config
        elapsed = 0.0
        self.state = OrchestratorState.EVALUATING
        while elapsed < c.generation_time:
            if self._stop_event.is_set():
                reason = "stopped"
                break
            if self._advance_event.is_set():
                self._advance_event.clear()
                reason = "forced"
                break

            actions = self._forward_all(genomes, self.environment.observe())
            self.environment.apply_actions(actions)
            dt = c.tick_seconds * self.time_scale
            self.environment.step(dt)
            elapsed += dt

            if elapsed >= c.warmup_time:
                self.state = OrchestratorState.EARLY_CHECK
                reason = self._early_termination_reason(self.environment.statuses(), check_thresholds)
                if reason:
                    break
                self.state = OrchestratorState.EVALUATING
        else:
            reason = "budget"
        return reason, elapsed

    def _early_termination_reason(self, statuses, check_thresholds=True):
        if not statuses:
            return None
        count = len(statuses)
        failed = sum(1 for s in statuses if s.failed)
        succeeded = sum(1 for s in statuses if s.succeeded)
        if check_thresholds:
            if failed / count > self.config.failure_fraction_threshold:
                return "failure"
            if succeeded / count > self.config.success_fraction_threshold:
                return "success"
        if failed + succeeded == count:
            return "settled"
        return None

    def _forward_all(self, genomes, observations):
        if len(observations) != len(genomes):
            logger.warning("Environment returned {} observations for {} agents", len(observations), len(genomes))
        if self._pool is not None:
            actions = list(self._pool.map(NetworkGenome.forward, genomes, observations))
        else:
            actions = [genome.forward(obs) for genome, obs in zip(genomes, observations)]
        return actions

    def _score(self, records):
        self.population.assign_fitness(records)
        try:
            check_fitness_batch([r.fitness for r in records], self.config.uniform_fitness_tolerance)
        except SuspectedCorruptFitness as e:
            self.population.quarantine_fitness(str(e))

    def _validate(self):
        """
        Re-evaluates the elite genomes unchanged. If enough of them succeed,
        the best one is saved under the victory tag and reporters are told.
        """
        c = self.config
        candidates = self.population.population[:c.elite_count]
        if not candidates and self.population.best_genome_ever is not None:
            candidates = [self.population.best_genome_ever]
        if not candidates:
            return False

        self.reporters.info(f"Validation round: re-evaluating {len(candidates)} elite genome(s)")
        self.environment.spawn(len(candidates))
        reason, _ = self._evaluate(candidates, check_thresholds=False)
        if reason == "stopped":
            self.environment.teardown()
            return False
        records = self.environment.harvest()
        self.environment.teardown()
        if not records:
            return False

        success_rate = sum(1 for r in records if r.succeeded) / len(records)
        logger.info("Validation success rate {:.0%} (needs {:.0%})", success_rate, c.victory_success_rate)
        if success_rate < c.victory_success_rate:
            return False

        best = max(records, key=lambda r: r.fitness)
        winner = candidates[best.genome_index].clone()
        winner.fitness = best.fitness
        self.validations_passed += 1
        if self.checkpointer is not None:
            self.checkpointer.submit(winner, self.population.generation, tag=f"{c.checkpoint_tag}_victory")
        self.reporters.found_solution(c, self.population.generation, winner)
        return True
