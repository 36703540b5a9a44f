import random

import numpy as np
import pytest

from neuroevolution_library.config import EvolutionConfig
from neuroevolution_library.environment import AgentStatus, Environment, EvaluationRecord
from neuroevolution_library.genome import NetworkGenome


@pytest.fixture(autouse=True)
def seeded():
    """Make every test deterministic."""
    random.seed(1234)
    np.random.seed(1234)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def small_config(tmp_path):
    """20 genomes shaped [4, 8, 2], short generations, checkpoints under tmp_path."""
    return EvolutionConfig(
        layer_sizes=(4, 8, 2),
        population_size=20,
        elite_count=2,
        generation_time=1.0,
        tick_seconds=0.1,
        warmup_time=0.2,
        validation_interval=0,
        checkpoint_dir=str(tmp_path / "checkpoints"),
        seed=7,
    ).validate()


@pytest.fixture
def genome(rng):
    return NetworkGenome.random((4, 8, 2), rng)


class ScriptedEnvironment(Environment):
    """
    Environment whose agents follow a script instead of physics.

    Agent i scores `fitness_fn(i)`; agents listed in `fails` report failure
    (with fitness -1) and agents in `successes` report success once
    `settle_time` simulated seconds have passed. `on_step` is called after
    every tick, which lets tests issue control commands mid-evaluation.
    """

    def __init__(self, fitness_fn=float, fails=(), successes=(), settle_time=0.0,
                 observation_size=4, on_step=None):
        self.fitness_fn = fitness_fn
        self.fails = set(fails)
        self.successes = set(successes)
        self.settle_time = settle_time
        self.observation_size = observation_size
        self.on_step = on_step
        self.count = 0
        self.elapsed = 0.0
        self.ticks = 0
        self.spawns = []
        self.teardowns = 0
        self.last_actions = None

    def spawn(self, count):
        self.count = count
        self.elapsed = 0.0
        self.ticks = 0
        self.spawns.append(count)

    def observe(self):
        return [np.full(self.observation_size, 0.5) for _ in range(self.count)]

    def apply_actions(self, actions):
        self.last_actions = [np.asarray(a) for a in actions]

    def step(self, dt):
        self.elapsed += dt
        self.ticks += 1
        if self.on_step is not None:
            self.on_step()

    def _settled(self):
        return self.elapsed >= self.settle_time

    def _failed(self, index):
        return index in self.fails and self._settled()

    def _succeeded(self, index):
        return index in self.successes and self._settled()

    def _fitness(self, index):
        return -1.0 if self._failed(index) else self.fitness_fn(index)

    def statuses(self):
        return [AgentStatus(self._fitness(i), self._failed(i), self._succeeded(i)) for i in range(self.count)]

    def harvest(self):
        return [EvaluationRecord(i, self._fitness(i), self._succeeded(i), self.elapsed) for i in range(self.count)]

    def teardown(self):
        self.teardowns += 1


@pytest.fixture
def scripted_environment():
    return ScriptedEnvironment
