import math

import numpy as np
import pytest

from neuroevolution_library.agents import ACTION_SIZE, OBSERVATION_SIZE, LimbAgent
from neuroevolution_library.config import LIMB_MAX_VELOCITY, REACH_BONUS, TARGET_RADIUS_RANGE
from neuroevolution_library.model import ReachingWorld


@pytest.fixture
def world():
    return ReachingWorld(seed=1)


class TestReachingWorld:

    def test_spawn_and_observe(self, world):
        world.spawn(5)
        assert len(world.agents) == 5
        observations = world.observe()
        assert len(observations) == 5
        assert all(obs.shape == (OBSERVATION_SIZE,) and np.all(np.isfinite(obs)) for obs in observations)
        radius = math.hypot(*world.target)
        assert TARGET_RADIUS_RANGE[0] <= radius <= TARGET_RADIUS_RANGE[1]

    def test_shared_target(self, world):
        world.spawn(4)
        assert all(np.array_equal(limb.target, world.limbs[0].target) for limb in world.limbs)

    def test_step_moves_limbs(self, world):
        world.spawn(3)
        world.apply_actions([np.ones(ACTION_SIZE)] * 3)
        world.step(0.1)
        assert world.elapsed == pytest.approx(0.1)
        assert all(limb.lifetime == pytest.approx(0.1) for limb in world.limbs)
        assert all(np.all(limb.velocities > 0) for limb in world.limbs)

    def test_statuses_and_harvest(self, world):
        world.spawn(3)
        world.step(0.05)
        assert len(world.statuses()) == 3
        records = world.harvest()
        assert [r.genome_index for r in records] == [0, 1, 2]
        assert all(r.lifetime == pytest.approx(0.05) for r in records)

    def test_respawn_replaces_agents(self, world):
        world.spawn(5)
        world.spawn(2)
        assert len(world.agents) == 2
        assert [limb.index for limb in world.limbs] == [0, 1]

    def test_teardown_removes_agents(self, world):
        world.spawn(4)
        world.teardown()
        assert len(world.agents) == 0
        assert world.limbs == []

    def test_median_attributes(self, world):
        world.spawn(3)
        summary = world.get_agents_median_attributes()
        assert summary["count_agents"] == 3
        assert summary["count_succeeded"] == 0
        assert summary["median_lifetime"] == 0.0


class TestLimbAgent:

    def test_resting_observation(self, world):
        limb = LimbAgent(world, 0, (1.0, 1.0))
        assert np.allclose(limb.get_inputs(), [0, 1, 0, 1, 0, 0, -0.8, 1.0])

    def test_commands_are_clipped(self, world):
        limb = LimbAgent(world, 0, (1.0, 1.0))
        limb.set_command([5.0, -5.0, 3.0])
        assert np.array_equal(limb.command, [1.0, -1.0])
        limb.set_command([0.5])
        assert np.array_equal(limb.command, [0.5, 0.0])

    def test_velocity_limit(self, world):
        limb = LimbAgent(world, 0, (-1.0, -1.0))
        limb.set_command([1.0, 1.0])
        for _ in range(50):
            limb.step(0.1)
            if not limb.is_active:
                break
        assert np.all(np.abs(limb.velocities) <= LIMB_MAX_VELOCITY)

    def test_reaching_the_target(self, world):
        limb = LimbAgent(world, 0, (1.8, 0.05))
        limb.step(0.01)
        assert limb.succeeded
        assert limb.fitness == pytest.approx(REACH_BONUS)
        limb.step(0.01)
        assert limb.lifetime == pytest.approx(0.01)

    def test_drifting_away_fails(self, world):
        limb = LimbAgent(world, 0, (0.5, 0.0))
        limb.angles = np.array([math.pi, 0.0])
        limb.step(0.01)
        assert limb.failed
        assert not limb.succeeded
        assert limb.fitness < 0

    def test_progress_is_rewarded(self, world):
        limb = LimbAgent(world, 0, (0.0, 1.8))
        limb.velocities = np.array([2.0, 0.0])
        limb.step(0.05)
        assert limb.is_active
        assert limb.fitness > 0
