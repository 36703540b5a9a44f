# neuroevolution_library/config.py
import configparser
import dataclasses
import os

from loguru import logger

from .exceptions import ConfigurationError

# Network shape
LAYER_SIZES = (8, 12, 2) # Sized for the reaching limb: 8 observations, 2 joint commands
HIDDEN_ACTIVATION = "tanh" # Looked up in neat's ActivationFunctionSet (plus "gelu")
HIDDEN_ACTIVATIONS = ("tanh", "sigmoid", "clamped", "sin", "gauss", "hat", "gelu") # Bounded on the clamped pre-activation range
INPUT_CLAMP = 10.0
PRE_ACTIVATION_CLAMP = 20.0

# Population
POPULATION_SIZE = 30
ELITE_COUNT = 3

# Mutation
MUTATION_RATE = 0.1
MUTATION_STRENGTH = 0.2
PARAMETER_CLAMP = 5.0
MAJOR_MUTATION_PROBABILITY = 0.05
MAJOR_MUTATION_RATE_FACTOR = 2.0
MAJOR_MUTATION_STRENGTH_FACTOR = 5.0
MUTATION_DECAY = 0.995
MIN_MUTATION_RATE = 0.01

# Crossover
NEURONWISE_CROSSOVER_PROBABILITY = 0.7
INTERPOLATION_PROBABILITY = 0.2 # Per gene, only when a neuron is crossed gene by gene

# Reproduction recipes (must sum to 1)
CROSSOVER_RECIPE_PROBABILITY = 0.7
CLONE_RECIPE_PROBABILITY = 0.2
RANDOM_RECIPE_PROBABILITY = 0.1
CLONE_MUTATION_FACTOR = 2.0
RADICAL_MUTATION_PROBABILITY = 0.05
RADICAL_MUTATION_RATE = 0.5
RADICAL_MUTATION_STRENGTH = 1.0

# Tournament schedule
TOURNAMENT_SIZE_START = 3
TOURNAMENT_SIZE_STEP = 1
TOURNAMENT_SIZE_INTERVAL = 20 # Generations between increases
TOURNAMENT_SIZE_MAX = 7

# Stagnation
STAGNATION_THRESHOLD = 10
STAGNATION_MARGIN = 0.01 # Relative improvement required over the window mean
STAGNATION_RATE_FACTOR = 1.5
STAGNATION_STRENGTH_FACTOR = 1.2
STAGNATION_RADICAL_FACTOR = 2.0

# Diversity repair
DIVERSITY_SAMPLE_PAIRS = 20
DIVERSITY_GENE_THRESHOLD = 0.05
DIVERSITY_FLOOR = 0.1
DIVERSITY_REPLACE_FRACTION = 0.2

# Regularization
REGULARIZE_INTERVAL = 5
REGULARIZE_RATE = 0.0001

# Fitness anomaly detection
POISONED_FITNESS_VALUES = () # Known sentinel values leaking from a buggy environment
POISONED_FITNESS_TOLERANCE = 1e-4
MAX_PLAUSIBLE_FITNESS = 1e6
UNIFORM_FITNESS_TOLERANCE = 1e-6

# Evaluation
GENERATION_TIME = 10.0 # Simulated seconds per generation
TICK_SECONDS = 0.02
WARMUP_TIME = 2.0
FAILURE_FRACTION_THRESHOLD = 0.8
SUCCESS_FRACTION_THRESHOLD = 0.5
TIME_SCALE = 1.0
MIN_TIME_SCALE = 0.1
MAX_TIME_SCALE = 100.0
PARALLEL_WORKERS = 0 # 0 evaluates forward passes sequentially

# Validation rounds
VALIDATION_INTERVAL = 10 # 0 disables
VICTORY_SUCCESS_RATE = 0.9

# Checkpointing
CHECKPOINT_DIR = "checkpoints"
CHECKPOINT_TAG = "limb"
CHECKPOINT_EXTENSION = "json"
CHECKPOINT_INTERVAL = 10
MAX_SNAPSHOTS = 10
LOAD_POLICY = "fittest" # or "latest"

# Reaching limb reference world
LIMB_SEGMENT_LENGTHS = (1.0, 0.8)
LIMB_MAX_ACCELERATION = 8.0 # rad/s^2 at a full-scale action
LIMB_MAX_VELOCITY = 4.0
LIMB_DAMPING = 0.9 # Velocity kept per simulated second
TARGET_RADIUS_RANGE = (0.5, 1.6)
REACH_TOLERANCE = 0.1
REACH_BONUS = 5.0
FAILURE_DRIFT = 0.5 # Distance lost relative to the start before an agent counts as failed
ENERGY_COST = 0.01

# Plotting output
PLOT_OUTPUT_DIR = "simulation_plots"

# INI section read and written by from_file/write_config_file
CONFIG_SECTION = "Evolution"

LOAD_POLICIES = ("latest", "fittest")


@dataclasses.dataclass
class EvolutionConfig:
    """
    Every tunable of the engine in one place.

    The same instance is handed to the operators, the population manager and
    the orchestrator; nothing looks tunables up by name at runtime.
    """
    layer_sizes: tuple = LAYER_SIZES
    hidden_activation: str = HIDDEN_ACTIVATION

    population_size: int = POPULATION_SIZE
    elite_count: int = ELITE_COUNT

    mutation_rate: float = MUTATION_RATE
    mutation_strength: float = MUTATION_STRENGTH
    parameter_clamp: float = PARAMETER_CLAMP
    major_mutation_probability: float = MAJOR_MUTATION_PROBABILITY
    major_mutation_rate_factor: float = MAJOR_MUTATION_RATE_FACTOR
    major_mutation_strength_factor: float = MAJOR_MUTATION_STRENGTH_FACTOR
    mutation_decay: float = MUTATION_DECAY
    min_mutation_rate: float = MIN_MUTATION_RATE

    neuronwise_crossover_probability: float = NEURONWISE_CROSSOVER_PROBABILITY
    interpolation_probability: float = INTERPOLATION_PROBABILITY

    crossover_recipe_probability: float = CROSSOVER_RECIPE_PROBABILITY
    clone_recipe_probability: float = CLONE_RECIPE_PROBABILITY
    random_recipe_probability: float = RANDOM_RECIPE_PROBABILITY
    clone_mutation_factor: float = CLONE_MUTATION_FACTOR
    radical_mutation_probability: float = RADICAL_MUTATION_PROBABILITY
    radical_mutation_rate: float = RADICAL_MUTATION_RATE
    radical_mutation_strength: float = RADICAL_MUTATION_STRENGTH

    tournament_size_start: int = TOURNAMENT_SIZE_START
    tournament_size_step: int = TOURNAMENT_SIZE_STEP
    tournament_size_interval: int = TOURNAMENT_SIZE_INTERVAL
    tournament_size_max: int = TOURNAMENT_SIZE_MAX

    stagnation_threshold: int = STAGNATION_THRESHOLD
    stagnation_margin: float = STAGNATION_MARGIN
    stagnation_rate_factor: float = STAGNATION_RATE_FACTOR
    stagnation_strength_factor: float = STAGNATION_STRENGTH_FACTOR
    stagnation_radical_factor: float = STAGNATION_RADICAL_FACTOR

    diversity_sample_pairs: int = DIVERSITY_SAMPLE_PAIRS
    diversity_gene_threshold: float = DIVERSITY_GENE_THRESHOLD
    diversity_floor: float = DIVERSITY_FLOOR
    diversity_replace_fraction: float = DIVERSITY_REPLACE_FRACTION

    regularize_interval: int = REGULARIZE_INTERVAL
    regularize_rate: float = REGULARIZE_RATE

    poisoned_fitness_values: tuple = POISONED_FITNESS_VALUES
    poisoned_fitness_tolerance: float = POISONED_FITNESS_TOLERANCE
    max_plausible_fitness: float = MAX_PLAUSIBLE_FITNESS
    uniform_fitness_tolerance: float = UNIFORM_FITNESS_TOLERANCE

    generation_time: float = GENERATION_TIME
    tick_seconds: float = TICK_SECONDS
    warmup_time: float = WARMUP_TIME
    failure_fraction_threshold: float = FAILURE_FRACTION_THRESHOLD
    success_fraction_threshold: float = SUCCESS_FRACTION_THRESHOLD
    time_scale: float = TIME_SCALE
    parallel_workers: int = PARALLEL_WORKERS

    validation_interval: int = VALIDATION_INTERVAL
    victory_success_rate: float = VICTORY_SUCCESS_RATE

    checkpoint_dir: str = CHECKPOINT_DIR
    checkpoint_tag: str = CHECKPOINT_TAG
    checkpoint_interval: int = CHECKPOINT_INTERVAL
    max_snapshots: int = MAX_SNAPSHOTS
    load_policy: str = LOAD_POLICY

    seed: int = None

    def __post_init__(self):
        self.layer_sizes = tuple(int(size) for size in self.layer_sizes)
        self.poisoned_fitness_values = tuple(float(v) for v in self.poisoned_fitness_values)

    def validate(self):
        """Raises ConfigurationError on the first inconsistent tunable, returns self otherwise."""
        # Imported here to keep config importable without pulling numpy/neat in
        from .genome import is_known_activation

        if len(self.layer_sizes) < 2:
            raise ConfigurationError(f"layer_sizes needs at least 2 entries, got {self.layer_sizes}")
        if any(size <= 0 for size in self.layer_sizes):
            raise ConfigurationError(f"layer sizes must be positive, got {self.layer_sizes}")
        if not is_known_activation(self.hidden_activation):
            raise ConfigurationError(f"Unknown hidden activation {self.hidden_activation!r}")
        if self.hidden_activation not in HIDDEN_ACTIVATIONS:
            raise ConfigurationError(
                f"Hidden activation {self.hidden_activation!r} is unbounded, use one of {HIDDEN_ACTIVATIONS}")
        if self.population_size < 2:
            raise ConfigurationError("population_size must be at least 2")
        if not 0 <= self.elite_count < self.population_size:
            raise ConfigurationError(
                f"elite_count must be in [0, population_size), got {self.elite_count}")
        for name in ("mutation_rate", "min_mutation_rate", "major_mutation_probability",
                     "neuronwise_crossover_probability", "interpolation_probability",
                     "crossover_recipe_probability", "clone_recipe_probability",
                     "random_recipe_probability", "radical_mutation_probability",
                     "radical_mutation_rate", "diversity_floor", "diversity_replace_fraction",
                     "regularize_rate", "failure_fraction_threshold",
                     "success_fraction_threshold", "victory_success_rate", "mutation_decay"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        for name in ("mutation_strength", "radical_mutation_strength", "parameter_clamp"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        recipe_total = (self.crossover_recipe_probability + self.clone_recipe_probability
                        + self.random_recipe_probability)
        if abs(recipe_total - 1.0) > 1e-6:
            raise ConfigurationError(f"Reproduction recipe probabilities sum to {recipe_total}, expected 1")
        if self.tournament_size_start < 1 or self.tournament_size_max < self.tournament_size_start:
            raise ConfigurationError("Tournament sizes must satisfy 1 <= start <= max")
        if self.tournament_size_interval < 1:
            raise ConfigurationError("tournament_size_interval must be at least 1")
        if self.stagnation_threshold < 1:
            raise ConfigurationError("stagnation_threshold must be at least 1")
        if self.generation_time <= 0 or self.tick_seconds <= 0:
            raise ConfigurationError("generation_time and tick_seconds must be positive")
        if self.warmup_time < 0:
            raise ConfigurationError("warmup_time must be non-negative")
        if not MIN_TIME_SCALE <= self.time_scale <= MAX_TIME_SCALE:
            raise ConfigurationError(
                f"time_scale must be within [{MIN_TIME_SCALE}, {MAX_TIME_SCALE}], got {self.time_scale}")
        if self.parallel_workers < 0:
            raise ConfigurationError("parallel_workers must be non-negative")
        if self.checkpoint_interval < 1 or self.max_snapshots < 1:
            raise ConfigurationError("checkpoint_interval and max_snapshots must be at least 1")
        if self.load_policy not in LOAD_POLICIES:
            raise ConfigurationError(f"load_policy must be one of {LOAD_POLICIES}, got {self.load_policy!r}")
        return self

    def replace(self, **changes):
        """Returns a copy with the given tunables changed."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_file(cls, config_path, **overrides):
        """
        Builds a config from the [Evolution] section of an INI file.

        Args:
            config_path (str): Path to the INI file.
            **overrides: Tunables that win over the file (e.g. from the command line).

        Returns:
            EvolutionConfig: The validated configuration.
        """
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Config file '{config_path}' not found")
        parser = configparser.ConfigParser()
        try:
            parser.read(config_path)
        except configparser.Error as e:
            raise ConfigurationError(f"Cannot parse config file '{config_path}': {e}") from e
        if not parser.has_section(CONFIG_SECTION):
            raise ConfigurationError(f"Config file '{config_path}' has no [{CONFIG_SECTION}] section")

        fields = {f.name: f for f in dataclasses.fields(cls)}
        values = {}
        for key, raw in parser.items(CONFIG_SECTION):
            if key not in fields:
                raise ConfigurationError(f"Unknown tunable '{key}' in '{config_path}'")
            values[key] = _parse_value(key, raw, fields[key].default)
        values.update(overrides)
        return cls(**values).validate()


def _parse_value(key, raw, default):
    raw = raw.strip()
    try:
        if isinstance(default, tuple):
            return tuple(float(item) if key != "layer_sizes" else int(item)
                         for item in raw.split()) if raw else ()
        if key == "seed":
            return None if raw.lower() in ("", "none") else int(raw)
        if isinstance(default, bool):
            return raw.lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Bad value for '{key}': {raw!r}") from e
    return raw


def write_config_file(config_path, config):
    """Writes every tunable of `config` to an INI file readable by EvolutionConfig.from_file."""
    logger.info("Writing evolution config file at '{}'", config_path)
    with open(config_path, 'w') as f:
        f.write(f"[{CONFIG_SECTION}]\n")
        for field in dataclasses.fields(config):
            value = getattr(config, field.name)
            if isinstance(value, tuple):
                value = " ".join(str(v) for v in value)
            elif value is None:
                value = "none"
            f.write(f"{field.name} = {value}\n")
