# neuroevolution_library/agents.py
import math

import numpy as np
from mesa import Agent

from .config import (LIMB_SEGMENT_LENGTHS, LIMB_MAX_ACCELERATION, LIMB_MAX_VELOCITY, LIMB_DAMPING,
                     REACH_TOLERANCE, REACH_BONUS, FAILURE_DRIFT, ENERGY_COST)
from .genome import adapt_vector

OBSERVATION_SIZE = 8
ACTION_SIZE = 2


class LimbAgent(Agent):
    """
    A planar two-joint limb anchored at the origin that tries to put its tip
    on a target point.

    The network drives joint accelerations. Fitness accumulates the distance
    gained toward the target each step, minus a small energy cost; touching the
    target pays a bonus and ends the agent's run as a success, while drifting
    `FAILURE_DRIFT` further away than where it started marks it failed.
    """
    def __init__(self, model, index, target):
        """
        Args:
            model (ReachingWorld): The mesa model this limb belongs to.
            index (int): Position in spawn order, which is also its genome index.
            target (sequence of float): (x, y) point the tip should reach.
        """
        super().__init__(model)
        self.index = index
        self.target = np.asarray(target, dtype=float)
        self.angles = np.zeros(2)
        self.velocities = np.zeros(2)
        self.command = np.zeros(ACTION_SIZE)

        self.fitness = 0.0
        self.lifetime = 0.0
        self.succeeded = False
        self.failed = False
        self.start_distance = self.distance_to_target()
        self._last_distance = self.start_distance

    @property
    def is_active(self):
        return not (self.succeeded or self.failed)

    def tip_position(self):
        upper, lower = LIMB_SEGMENT_LENGTHS
        shoulder = self.angles[0]
        elbow = shoulder + self.angles[1]
        return np.array([upper * math.cos(shoulder) + lower * math.cos(elbow),
                         upper * math.sin(shoulder) + lower * math.sin(elbow)])

    def distance_to_target(self):
        return float(np.linalg.norm(self.target - self.tip_position()))

    def get_inputs(self):
        """
        Joint angles as sin/cos pairs, joint velocities normalized by the speed
        limit, and the vector from the tip to the target.

        Returns:
            numpy.ndarray: OBSERVATION_SIZE values.
        """
        offset = self.target - self.tip_position()
        return np.array([
            math.sin(self.angles[0]), math.cos(self.angles[0]),
            math.sin(self.angles[1]), math.cos(self.angles[1]),
            self.velocities[0] / LIMB_MAX_VELOCITY, self.velocities[1] / LIMB_MAX_VELOCITY,
            offset[0], offset[1],
        ])

    def set_command(self, action):
        self.command = np.clip(adapt_vector(action, ACTION_SIZE), -1.0, 1.0)

    def step(self, dt):
        if not self.is_active:
            return
        self.velocities += self.command * LIMB_MAX_ACCELERATION * dt
        self.velocities *= LIMB_DAMPING ** dt
        self.velocities = np.clip(self.velocities, -LIMB_MAX_VELOCITY, LIMB_MAX_VELOCITY)
        self.angles += self.velocities * dt
        self.lifetime += dt

        distance = self.distance_to_target()
        self.fitness += (self._last_distance - distance) - ENERGY_COST * float(np.sum(self.command ** 2)) * dt
        self._last_distance = distance

        if distance <= REACH_TOLERANCE:
            self.succeeded = True
            self.fitness += REACH_BONUS
        elif distance - self.start_distance > FAILURE_DRIFT:
            self.failed = True
