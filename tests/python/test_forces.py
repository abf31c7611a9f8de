from __future__ import annotations

import math

import pytest
from pygame.math import Vector2
from pytest import approx

from crowdsim.sim.core.agent import AgentSpec, AttentionKind, ForceModelKind
from crowdsim.sim.core.config import LocomotionConfig, SceneConfig, SimulationConfig
from crowdsim.sim.core.geometry import WallSegment
from crowdsim.sim.core.world import World
from crowdsim.sim.systems.forces import (
    CollisionPredictionModel,
    EllipticalBiparameterModel,
    EllipticalSpecificationModel,
    SocialForceModel,
    VisionUtilityModel,
    build_force_models,
    cap_acceleration,
    clamp_collision_time,
    model_label,
    predict_collision_time,
)

DT = 0.02


def _assert_opposite(first: Vector2, second: Vector2) -> None:
    assert first.length() > 0.0
    assert first.x == approx(-second.x)
    assert first.y == approx(-second.y)


@pytest.mark.parametrize(
    "velocities",
    [((0.0, 0.0), (0.0, 0.0)), ((0.0, 1.0), (0.0, -1.0)), ((0.5, 0.2), (-0.3, 0.4))],
)
def test_social_force_pair_obeys_third_law(make_agent, velocities):
    model = SocialForceModel(LocomotionConfig(), DT)
    left = make_agent(0, (-0.2, 0.0), velocities[0])
    right = make_agent(1, (0.2, 0.0), velocities[1])

    on_left = model.agent_force(left, [right], None)
    on_right = model.agent_force(right, [left], None)

    _assert_opposite(on_left, on_right)
    assert on_left.x < 0.0


def test_social_force_is_zero_without_neighbors(make_agent):
    model = SocialForceModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0))
    assert model.agent_force(agent, [], None) == Vector2()
    assert model.wall_force(agent, [], None) == Vector2()


def test_noise_is_held_between_resamples(make_agent):
    model = SocialForceModel(LocomotionConfig(noise_scale=10.0, noise_interval_seconds=0.9), DT)
    agent = make_agent(0, (0.0, 0.0))

    assert model.noise_interval == 45
    model.prepare(agent)
    first = Vector2(agent.noise_force)
    assert first.length() > 0.0
    for _ in range(44):
        model.prepare(agent)
        assert agent.noise_force == first
    model.prepare(agent)
    assert agent.noise_force != first


def test_collision_time_infinite_outside_cone():
    time = predict_collision_time(Vector2(), Vector2(1.0, 0.0), 0.3, Vector2(0.0, 3.0), Vector2(), 0.3)
    assert time == math.inf

    parallel = predict_collision_time(Vector2(), Vector2(1.0, 0.0), 0.3, Vector2(0.0, 2.0), Vector2(1.0, 0.0), 0.3)
    assert parallel == math.inf


def test_collision_time_for_converging_pair_is_clamped():
    head_on = predict_collision_time(Vector2(), Vector2(1.0, 0.0), 0.3, Vector2(5.0, 0.0), Vector2(-1.0, 0.0), 0.3)
    assert head_on == approx(2.2)
    assert clamp_collision_time(head_on, DT, 4.0) == approx(2.2)

    distant = predict_collision_time(Vector2(), Vector2(1.0, 0.0), 0.3, Vector2(20.0, 0.0), Vector2(-1.0, 0.0), 0.3)
    assert clamp_collision_time(distant, DT, 4.0) == 4.0

    touching = predict_collision_time(Vector2(), Vector2(1.0, 0.0), 0.3, Vector2(0.5, 0.0), Vector2(-1.0, 0.0), 0.3)
    assert touching < DT
    assert clamp_collision_time(touching, DT, 4.0) == DT


def test_collision_prediction_only_hard_core_when_not_converging(make_agent):
    config = LocomotionConfig()
    model = CollisionPredictionModel(config, DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    beside = make_agent(1, (0.0, 0.4), (1.0, 0.0))

    assert model.collision_time(agent, [beside]) == math.inf
    force = model.agent_force(agent, [beside], None)
    assert force.x == approx(0.0)
    assert force.y == approx(-config.body_collision_force_weight / agent.mass)

    apart = make_agent(2, (0.0, 2.0), (1.0, 0.0))
    assert model.agent_force(agent, [apart], None) == Vector2()


def test_collision_prediction_repels_converging_neighbor(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    oncoming = make_agent(1, (3.0, 0.1), (-1.0, 0.0))

    force = model.agent_force(agent, [oncoming], None)
    assert force.x < 0.0


def test_collision_prediction_tilts_change_the_force(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    plain = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    tilted = make_agent(0, (0.0, 0.0), (1.0, 0.0), tilt_position=True)
    oncoming = make_agent(1, (3.0, 0.0), (-1.0, 0.0))

    straight = model.agent_force(plain, [oncoming], None)
    rotated = model.agent_force(tilted, [oncoming], None)
    assert straight.y == approx(0.0)
    assert rotated.y != approx(0.0)
    assert rotated.length() == approx(straight.length())


def test_velocity_tilt_only_shifts_collision_time(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    plain = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    tilted = make_agent(0, (0.0, 0.0), (1.0, 0.0), tilt_velocity=True)
    oncoming = make_agent(1, (3.0, 0.0), (-1.0, 0.0))

    assert model.collision_time(tilted, [oncoming]) != approx(model.collision_time(plain, [oncoming]))
    force = model.agent_force(tilted, [oncoming], None)
    assert force.x < 0.0
    assert force.y == approx(0.0, abs=1e-12)


def _wall(start, end, wall_id=0) -> WallSegment:
    return WallSegment(id=wall_id, start=Vector2(start), end=Vector2(end))


def test_collision_prediction_wall_ahead(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    ahead = _wall((2.0, 1.0), (2.0, -1.0))

    force = model.wall_force(agent, [(Vector2(2.0, 0.0), ahead)], None)
    t = 2.0 - agent.radius
    assert force.x == approx(-(1.0 / t) * math.exp(-t / 0.2))
    assert force.y == approx(0.0)


def test_collision_prediction_parallel_wall_uses_longest_horizon(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    beside = _wall((-5.0, 1.0), (5.0, 1.0))

    force = model.wall_force(agent, [(Vector2(0.0, 1.0), beside)], None)
    assert force.x == approx(0.0)
    assert force.y == approx(-(1.0 / 4.0) * math.exp(-0.7 / 0.2))


def test_collision_prediction_picks_earliest_wall(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    ahead = (Vector2(2.0, 0.0), _wall((2.0, 1.0), (2.0, -1.0), 0))
    beside = (Vector2(0.0, 1.0), _wall((-5.0, 1.0), (5.0, 1.0), 1))

    both = model.wall_force(agent, [beside, ahead], None)
    only_ahead = model.wall_force(agent, [ahead], None)
    assert both.x == approx(only_ahead.x)
    assert both.y == approx(0.0)


def test_collision_prediction_wall_time_is_clamped_to_a_tick(make_agent):
    model = CollisionPredictionModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    close = _wall((0.31, 1.0), (0.31, -1.0))

    force = model.wall_force(agent, [(Vector2(0.31, 0.0), close)], None)
    assert force.x == approx(-(1.0 / DT) * math.exp(-0.01 / 0.2))


def test_collision_prediction_wall_overlap_adds_hard_core(make_agent):
    config = LocomotionConfig()
    model = CollisionPredictionModel(config, DT)
    agent = make_agent(0, (0.0, 0.0))
    touching = _wall((0.2, 1.0), (0.2, -1.0))

    force = model.wall_force(agent, [(Vector2(0.2, 0.0), touching)], None)
    assert force.x == approx(-config.body_collision_force_weight / agent.mass)
    assert force.y == approx(0.0)


def test_elliptical_force_between_stationary_agents(make_agent):
    model = EllipticalSpecificationModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0))
    other = make_agent(1, (1.0, 0.0))

    force = model.agent_force(agent, [other], None)
    expected = 0.11 * math.exp(-1.0 / 1.19) * 2.0 / 4.0 * 2.0
    assert force.x == approx(-expected)
    assert force.y == approx(0.0)


def test_elliptical_models_add_hard_core_on_overlap(make_agent):
    config = LocomotionConfig()
    for model_type in (EllipticalSpecificationModel, EllipticalBiparameterModel):
        model = model_type(config, DT)
        agent = make_agent(0, (0.0, 0.0))
        other = make_agent(1, (0.4, 0.0))
        force = model.agent_force(agent, [other], None)
        assert force.x < -config.body_collision_force_weight / agent.mass + 1e-9


def test_biparameter_weights_neighbours_behind_less(make_agent):
    model = EllipticalBiparameterModel(LocomotionConfig(), DT)
    agent = make_agent(0, (0.0, 0.0), (1.0, 0.0))
    ahead = make_agent(1, (1.5, 0.0), (1.0, 0.0))
    behind = make_agent(2, (-1.5, 0.0), (1.0, 0.0))

    front = model.agent_force(agent, [ahead], None)
    back = model.agent_force(agent, [behind], None)
    assert front.length() > back.length()


def test_speed_cap_limits_next_velocity():
    capped = cap_acceleration(Vector2(2.0, 0.0), Vector2(100.0, 0.0), DT, 2.5)
    assert capped.x == approx(25.0)
    assert (Vector2(2.0, 0.0) + capped * DT).length() == approx(2.5)

    free = cap_acceleration(Vector2(1.0, 0.0), Vector2(1.0, 0.0), DT, 2.5)
    assert free.x == approx(1.0)


def test_vision_utility_steers_around_obstacle():
    config = SimulationConfig(scene=SceneConfig(walls=[(2.0, -1.0, 2.0, 1.0)]))
    config.population.force_model = "moussaid"
    world = World(config)
    agent_id = world.spawn(AgentSpec(origin=Vector2(0.0, 0.0), destination=Vector2(10.0, 0.0), desired_speed=1.2))
    agent = world.agent(agent_id)
    agent.velocity = Vector2(1e-3, 0.0)
    world.refresh_perception()

    model = world.force_model(ForceModelKind.VISION_UTILITY)
    assert isinstance(model, VisionUtilityModel)
    assert agent.perception_radius == VisionUtilityModel.PERCEPTION_RADIUS
    force = model.compute(world, agent)
    heading = abs(math.degrees(math.atan2(force.y, force.x)))
    assert 26.0 < heading < 76.0


def test_vision_utility_heads_for_goal_when_clear():
    config = SimulationConfig()
    config.population.force_model = "moussaid"
    world = World(config)
    agent = world.agent(world.spawn(AgentSpec(origin=Vector2(), destination=Vector2(10.0, 0.0), desired_speed=1.0)))
    agent.velocity = Vector2(1.0, 0.0)
    world.refresh_perception()

    force = world.force_model(ForceModelKind.VISION_UTILITY).compute(world, agent)
    assert abs(force.y) < 0.1
    assert force.x == approx(0.0, abs=1e-2)


def test_registry_covers_every_model():
    models = build_force_models(LocomotionConfig(), DT)
    assert set(models) == set(ForceModelKind)
    assert models[ForceModelKind.SOCIAL_FORCE].speed_capped
    assert not models[ForceModelKind.VISION_UTILITY].speed_capped


@pytest.mark.parametrize(
    ("force", "attention", "tilt_position", "tilt_velocity", "expected"),
    [
        (ForceModelKind.SOCIAL_FORCE, AttentionKind.NONE, False, False, "SFM"),
        (ForceModelKind.COLLISION_PREDICTION, AttentionKind.LOGISTIC, False, True, "SFM-CP-TV-Ours"),
        (ForceModelKind.COLLISION_PREDICTION, AttentionKind.NONE, True, True, "SFM-CP-TP"),
        (ForceModelKind.ELLIPTICAL, AttentionKind.PREFERENCE, False, True, "SFM-ES"),
        (ForceModelKind.ELLIPTICAL_BIPARAMETER, AttentionKind.NONE, True, False, "SFM-NES-TP"),
        (ForceModelKind.VISION_UTILITY, AttentionKind.LOGISTIC, True, True, "Mou-Ours"),
    ],
)
def test_model_label(force, attention, tilt_position, tilt_velocity, expected):
    assert model_label(force, attention, tilt_position, tilt_velocity) == expected
