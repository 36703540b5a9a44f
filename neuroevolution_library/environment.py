# neuroevolution_library/environment.py
"""
Contract between the engine and whatever simulates the agents' bodies.

The orchestrator only ever talks to an `Environment`: it spawns one agent per
genome, feeds actions in, steps time forward and reads statuses and final
records out. Agent i is always driven by genome i.
"""
import abc
import dataclasses


@dataclasses.dataclass
class AgentStatus:
    """Live view of one agent, polled during the early-termination check."""
    fitness: float = 0.0
    failed: bool = False
    succeeded: bool = False


@dataclasses.dataclass
class EvaluationRecord:
    """Final result of one agent for one generation. Consumed once, then discarded."""
    genome_index: int
    fitness: float
    succeeded: bool = False
    lifetime: float = 0.0


class Environment(abc.ABC):

    @abc.abstractmethod
    def spawn(self, count):
        """Creates `count` fresh agents, replacing any previous ones."""

    @abc.abstractmethod
    def observe(self):
        """Returns one observation vector per agent, in spawn order."""

    @abc.abstractmethod
    def apply_actions(self, actions):
        """Hands one action vector (entries in [-1, 1]) to each agent, in spawn order."""

    @abc.abstractmethod
    def step(self, dt):
        """Advances the simulation by `dt` simulated seconds."""

    @abc.abstractmethod
    def statuses(self):
        """Returns the current AgentStatus of every agent, in spawn order."""

    @abc.abstractmethod
    def harvest(self):
        """Returns one EvaluationRecord per agent, in spawn order."""

    def teardown(self):
        """Releases the agents of the finished generation."""
