# neuroevolution_library/__init__.py

# Evolves fixed-shape feedforward controllers against a pluggable environment.

from .config import EvolutionConfig, write_config_file
from .exceptions import (NeuroevolutionError, ConfigurationError, StructuralMismatch, GenomeFormatError,
                         NumericAnomaly, SuspectedCorruptFitness, ResourceUnavailable)
from .genome import NetworkGenome, make_rng
from .operators import mutate, crossover, tournament_select, diversity
from .codec import serialize, deserialize, save, load, load_best, Checkpointer
from .population import PopulationManager, GenerationStats
from .environment import Environment, AgentStatus, EvaluationRecord
from .orchestrator import GenerationOrchestrator
from .model import ReachingWorld
from .agents import LimbAgent
from .reporting import ConsoleReporter, FitnessHistoryReporter
from .logging_setup import setup_logger

__version__ = "0.2.0"
