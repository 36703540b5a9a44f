# neuroevolution_library/model.py
import math

import numpy as np
from mesa import Model

from .agents import LimbAgent
from .config import TARGET_RADIUS_RANGE
from .environment import AgentStatus, Environment, EvaluationRecord


class ReachingWorld(Model, Environment):
    """
    Mesa model hosting one LimbAgent per genome.

    Every limb of a generation chases the same target so their fitness values
    are comparable; a new target is drawn at each spawn.
    """
    def __init__(self, seed=None, target_radius_range=TARGET_RADIUS_RANGE):
        """
        Args:
            seed (int, optional): Seed for mesa's random source (target placement).
            target_radius_range (tuple of float): Min and max target distance from the anchor.
        """
        super().__init__(seed=seed)
        self.target_radius_range = target_radius_range
        self.limbs = []
        self.target = None
        self.elapsed = 0.0

    def _random_target(self):
        radius = self.random.uniform(*self.target_radius_range)
        # Keep the target away from the resting tip, which lies on the +x axis
        angle = self.random.uniform(math.pi / 3, 5 * math.pi / 3)
        return radius * math.cos(angle), radius * math.sin(angle)

    def spawn(self, count):
        self.teardown()
        self.target = self._random_target()
        self.limbs = [LimbAgent(self, index, self.target) for index in range(count)]
        self.elapsed = 0.0

    def observe(self):
        return [limb.get_inputs() for limb in self.limbs]

    def apply_actions(self, actions):
        for limb, action in zip(self.limbs, actions):
            limb.set_command(action)

    def step(self, dt):
        self.agents.shuffle_do("step", dt)
        self.elapsed += dt

    def statuses(self):
        return [AgentStatus(limb.fitness, limb.failed, limb.succeeded) for limb in self.limbs]

    def harvest(self):
        return [EvaluationRecord(limb.index, limb.fitness, limb.succeeded, limb.lifetime)
                for limb in self.limbs]

    def teardown(self):
        for limb in self.limbs:
            limb.remove()
        self.limbs = []

    def get_agents_median_attributes(self):
        """Median fitness, distance to target and lifetime of the current limbs, plus outcome counts."""
        summary = {}
        for key, values in (("fitness", [l.fitness for l in self.limbs]),
                            ("distance", [l.distance_to_target() for l in self.limbs]),
                            ("lifetime", [l.lifetime for l in self.limbs])):
            summary[f"median_{key}"] = float(np.median(values)) if values else 0.0
        summary["count_succeeded"] = sum(1 for l in self.limbs if l.succeeded)
        summary["count_failed"] = sum(1 for l in self.limbs if l.failed)
        summary["count_agents"] = len(self.limbs)
        return summary
