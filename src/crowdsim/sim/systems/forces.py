from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, List, Tuple

from pygame.math import Vector2

from ..core.agent import Agent, AttentionKind, ForceModelKind
from ..core.config import LocomotionConfig
from ..core.geometry import WallSegment, agent_obstacle_id
from ..utils.math2d import (
    _clamp_length,
    _clamp_value,
    _project,
    _right_normal,
    _rotate_clockwise,
    _safe_normalize,
    _unsigned_angle,
)
from . import vision

if TYPE_CHECKING:
    from ..core.world import World

WallHit = Tuple[Vector2, WallSegment]

# Stands in for a collision time whose denominator vanished.
COLLISION_TIME_SENTINEL = 1e6
_PREDICTION_CONE = math.pi / 4
_EPSILON = 1e-9


def _wall_normal(position: Vector2, wall: WallSegment) -> Vector2:
    agent_vec = position - wall.start
    return _safe_normalize(agent_vec - _project(agent_vec, wall.tangent))


def _alignment(first: Vector2, second: Vector2) -> float:
    return _safe_normalize(first).dot(_safe_normalize(second))


def _direction_factor(asymmetry: float, velocity: Vector2, offset: Vector2) -> float:
    """Weights neighbours ahead of the agent more than those behind it."""
    cosine = _alignment(velocity, offset)
    return asymmetry + (1.0 - asymmetry) * (1.0 + cosine) / 2.0


def body_contact_force(agent: Agent, neighbors: List[Agent], weight: float) -> Vector2:
    force = Vector2()
    for other in neighbors:
        offset = agent.position - other.position
        overlap = (agent.radius + other.radius) - offset.length()
        if overlap > 0.0:
            force += _safe_normalize(offset) * (weight / agent.mass)
    return force


def wall_contact_force(agent: Agent, walls: List[WallHit], weight: float) -> Vector2:
    force = Vector2()
    for closest, wall in walls:
        overlap = agent.radius - (closest - agent.position).length()
        if overlap > 0.0:
            force += _wall_normal(agent.position, wall) * (weight / agent.mass)
    return force


def predict_collision_time(
    position: Vector2,
    velocity: Vector2,
    radius: float,
    other_position: Vector2,
    other_velocity: Vector2,
    other_radius: float,
) -> float:
    """Time until the pair is closest, or ``math.inf`` when they are not converging.

    Only pairs whose relative position and relative velocity are less than 45
    degrees apart are considered on a collision course.
    """
    offset = other_position - position
    closing = velocity - other_velocity
    closing_speed = closing.length()
    if closing_speed < _EPSILON or offset.length_squared() < _EPSILON:
        return math.inf
    if _unsigned_angle(offset, closing) >= _PREDICTION_CONE:
        return math.inf
    return (_project(offset, closing).length() - (radius + other_radius)) / closing_speed


def clamp_collision_time(value: float, time_step: float, max_time: float) -> float:
    return _clamp_value(value, time_step, max_time)


class ForceModel:
    kind: ForceModelKind
    speed_capped = False

    def __init__(self, config: LocomotionConfig, time_step: float) -> None:
        self._config = config
        self._time_step = time_step

    def prepare(self, agent: Agent) -> None:
        pass

    def compute(self, world: World, agent: Agent) -> Vector2:
        raise NotImplementedError

    def goal_velocity(self, agent: Agent) -> Vector2:
        if not agent.path:
            return Vector2()
        return _safe_normalize(agent.path[0] - agent.position) * agent.desired_speed


class SocialForceModel(ForceModel):
    """Helbing, Farkas and Vicsek (2000) with per-agent wall weight and held Gaussian noise."""

    kind = ForceModelKind.SOCIAL_FORCE
    speed_capped = True

    A = 2000.0
    B = 0.08
    K = 1.2e5
    KAPPA = 2.4e5

    def __init__(self, config: LocomotionConfig, time_step: float) -> None:
        super().__init__(config, time_step)
        self.noise_interval = max(1, int(round(config.noise_interval_seconds / time_step)))

    def prepare(self, agent: Agent) -> None:
        if agent.noise_timer % self.noise_interval == 0:
            agent.noise_force = agent.rng.next_gaussian_vector(self._config.noise_scale / agent.mass)
        agent.noise_timer += 1

    def compute(self, world: World, agent: Agent) -> Vector2:
        goal = self.goal_force(agent)
        agents = self.agent_force(agent, world.neighbors_of(agent), world)
        walls = self.wall_force(agent, world.query_walls(agent), world)
        return goal + agents + walls * agent.wall_force_weight + agent.noise_force

    def goal_force(self, agent: Agent) -> Vector2:
        if not agent.path:
            return Vector2()
        return (self.goal_velocity(agent) - agent.velocity) / self._config.relaxation_time

    def agent_force(self, agent: Agent, neighbors: List[Agent], world: World) -> Vector2:
        force = Vector2()
        for other in neighbors:
            offset = agent.position - other.position
            normal = _safe_normalize(offset)
            overlap = (agent.radius + other.radius) - offset.length()
            component = normal * (self.A * math.exp(overlap / self.B))
            if overlap > 0.0:
                tangent = _right_normal(normal)
                sliding = (other.velocity - agent.velocity).dot(tangent)
                component += normal * self.K
                component += tangent * (self.KAPPA * overlap * sliding)
            force += component
        return force / agent.mass

    def wall_force(self, agent: Agent, walls: List[WallHit], world: World) -> Vector2:
        force = Vector2()
        for closest, wall in walls:
            normal = _wall_normal(agent.position, wall)
            overlap = agent.radius - (closest - agent.position).length()
            component = normal * (self.A * math.exp(overlap / self.B))
            if overlap > 0.0:
                tangent = _right_normal(normal)
                component += normal * self.K
                component -= tangent * (self.KAPPA * overlap * agent.velocity.dot(tangent))
            force += component
        return force / agent.mass


class CollisionPredictionModel(SocialForceModel):
    """Zanlungo, Ikeda and Kanda (2011): repulsion from the predicted configuration at the earliest collision."""

    kind = ForceModelKind.COLLISION_PREDICTION

    def _neighbor_velocity(self, agent: Agent, other: Agent) -> Vector2:
        velocity = Vector2(other.velocity)
        if agent.tilt_velocity:
            cosine = _alignment(other.position - agent.position, agent.velocity)
            velocity = _rotate_clockwise(velocity, cosine * self._config.velocity_bias)
        return velocity

    def collision_time(self, agent: Agent, neighbors: List[Agent]) -> float:
        earliest = math.inf
        for other in neighbors:
            t = predict_collision_time(
                agent.position,
                agent.velocity,
                agent.radius,
                other.position,
                self._neighbor_velocity(agent, other),
                other.radius,
            )
            if t < earliest:
                earliest = t
        return earliest

    def agent_force(self, agent: Agent, neighbors: List[Agent], world: World) -> Vector2:
        config = self._config
        force = Vector2()
        earliest = self.collision_time(agent, neighbors)
        if earliest != math.inf:
            t = clamp_collision_time(earliest, self._time_step, config.max_collision_time)
            speed = agent.velocity.length()
            # Velocity tilt only shifts the predicted time; displacements use the observed velocity.
            for other in neighbors:
                offset = other.position - agent.position
                other_velocity = other.velocity
                expected = offset + (other_velocity - agent.velocity) * t
                if agent.tilt_position:
                    cosine = _alignment(other_velocity, agent.velocity)
                    expected = _rotate_clockwise(expected, cosine * config.position_bias)
                gap = offset.length() - (agent.radius + other.radius)
                magnitude = (
                    config.agent_force_weight * (speed / t) * math.exp(-gap / config.agent_force_discount)
                )
                component = _safe_normalize(-expected) * magnitude
                force += component * _direction_factor(config.asymmetry_factor, agent.velocity, offset)
        return force + body_contact_force(agent, neighbors, config.body_collision_force_weight)

    def wall_force(self, agent: Agent, walls: List[WallHit], world: World) -> Vector2:
        config = self._config
        force = wall_contact_force(agent, walls, config.body_collision_force_weight)

        earliest = math.inf
        nearest: Vector2 | None = None
        for closest, _wall in walls:
            to_wall = closest - agent.position
            approach = _project(agent.velocity, to_wall).length()
            gap = to_wall.length() - agent.radius
            t = COLLISION_TIME_SENTINEL if approach < _EPSILON else gap / approach
            if t < earliest:
                earliest = t
                nearest = to_wall
        if nearest is None:
            return force

        t = clamp_collision_time(earliest, self._time_step, config.max_collision_time)
        overlap = agent.radius - nearest.length()
        magnitude = (
            config.wall_force_weight
            * (agent.velocity.length() / t)
            * math.exp(overlap / config.wall_force_discount)
        )
        return force + _safe_normalize(-nearest) * magnitude


class EllipticalSpecificationModel(SocialForceModel):
    """Johansson, Helbing and Shukla (2007), elliptical specification I."""

    kind = ForceModelKind.ELLIPTICAL

    TAU = 0.53
    STRENGTH = 0.11
    RANGE = 1.19

    def relative_velocity(self, agent: Agent, other: Agent) -> Vector2:
        return Vector2(other.velocity)

    def neighbor_velocity(self, agent: Agent, other: Agent) -> Vector2:
        return Vector2(other.velocity)

    def asymmetry(self, agent: Agent, offset: Vector2) -> float:
        return 1.0

    def interaction(self, agent: Agent, other: Agent) -> Vector2:
        other_velocity = self.neighbor_velocity(agent, other)
        displacement = agent.position - other.position
        if agent.tilt_position:
            cosine = _alignment(other_velocity, agent.velocity)
            displacement = _rotate_clockwise(displacement, cosine * self._config.position_bias)
        stride = self.relative_velocity(agent, other) * self.TAU
        extrapolated = displacement - stride
        span = displacement.length() + extrapolated.length()
        semi_minor_sq = span * span - stride.length_squared()
        if semi_minor_sq <= 0.0:
            return Vector2()
        semi_minor = math.sqrt(semi_minor_sq) / 2.0
        if semi_minor < _EPSILON:
            return Vector2()
        direction = _safe_normalize(displacement) + _safe_normalize(extrapolated)
        magnitude = self.STRENGTH * math.exp(-semi_minor / self.RANGE) * span / (4.0 * semi_minor)
        return direction * magnitude * self.asymmetry(agent, other.position - agent.position)

    def agent_force(self, agent: Agent, neighbors: List[Agent], world: World) -> Vector2:
        force = Vector2()
        for other in neighbors:
            force += self.interaction(agent, other)
        return force + body_contact_force(agent, neighbors, self._config.body_collision_force_weight)


class EllipticalBiparameterModel(EllipticalSpecificationModel):
    """Elliptical specification II: relative velocity, direction-aware weight, optional velocity tilt."""

    kind = ForceModelKind.ELLIPTICAL_BIPARAMETER

    TAU = 1.78
    STRENGTH = 1.33
    RANGE = 0.34

    def neighbor_velocity(self, agent: Agent, other: Agent) -> Vector2:
        velocity = Vector2(other.velocity)
        if agent.tilt_velocity:
            cosine = _alignment(agent.velocity, velocity)
            velocity = _rotate_clockwise(velocity, cosine * self._config.velocity_bias)
        return velocity

    def relative_velocity(self, agent: Agent, other: Agent) -> Vector2:
        return self.neighbor_velocity(agent, other) - agent.velocity

    def asymmetry(self, agent: Agent, offset: Vector2) -> float:
        return _direction_factor(self._config.asymmetry_factor, agent.velocity, offset)


class VisionUtilityModel(ForceModel):
    """Moussaid, Helbing and Theraulaz (2011): heading picked from a vision fan, hard-core contacts only."""

    kind = ForceModelKind.VISION_UTILITY

    RAY_COUNT = 50
    HALF_ANGLE_DEG = 75.0
    RANGE = 10.0
    TAU = 0.5
    K = 5000.0
    PERCEPTION_RADIUS = 10.0

    def compute(self, world: World, agent: Agent) -> Vector2:
        heading = self.heading_force(world, agent)
        contacts = body_contact_force(agent, world.neighbors_of(agent), self.K)
        walls = wall_contact_force(agent, world.query_walls(agent), self.K)
        return heading + contacts + walls

    def obstacle_distances(self, world: World, agent: Agent, rays: List[Vector2]) -> List[float]:
        distances = []
        exclude = agent_obstacle_id(agent.id)
        for direction in rays:
            hit = world.raycaster.raycast(agent.position, direction, self.RANGE, exclude=exclude)
            if hit is None:
                distances.append(self.RANGE)
            else:
                distances.append(max(0.0, hit.distance - agent.radius))
        return distances

    def heading_force(self, world: World, agent: Agent) -> Vector2:
        if not agent.path:
            return Vector2()
        to_goal = agent.path[0] - agent.position
        rays = vision.construct_rays(agent.velocity, self.HALF_ANGLE_DEG, self.RAY_COUNT, agent.rng)
        distances = self.obstacle_distances(world, agent, rays)

        best_utility = math.inf
        best_index = 0
        for index, (direction, distance) in enumerate(zip(rays, distances)):
            cosine = math.cos(_unsigned_angle(direction, to_goal))
            utility = self.RANGE**2 + distance**2 - 2.0 * self.RANGE * distance * cosine
            if utility < best_utility:
                best_utility = utility
                best_index = index

        speed = min(distances[best_index] / self.TAU, agent.desired_speed)
        desired = rays[best_index] * speed
        return (desired - agent.velocity) / self.TAU


def build_force_models(config: LocomotionConfig, time_step: float) -> Dict[ForceModelKind, ForceModel]:
    models = (
        SocialForceModel,
        CollisionPredictionModel,
        EllipticalSpecificationModel,
        EllipticalBiparameterModel,
        VisionUtilityModel,
    )
    return {model.kind: model(config, time_step) for model in models}


def cap_acceleration(velocity: Vector2, acceleration: Vector2, time_step: float, speed_cap: float) -> Vector2:
    """Acceleration adjusted so the next velocity stays within ``speed_cap``."""
    if time_step <= 0.0:
        return acceleration
    proposed = velocity + acceleration * time_step
    return (_clamp_length(proposed, speed_cap) - velocity) / time_step


_BASE_LABELS = {
    ForceModelKind.SOCIAL_FORCE: "SFM",
    ForceModelKind.COLLISION_PREDICTION: "SFM-CP",
    ForceModelKind.ELLIPTICAL: "SFM-ES",
    ForceModelKind.ELLIPTICAL_BIPARAMETER: "SFM-NES",
    ForceModelKind.VISION_UTILITY: "Mou",
}
_TILT_POSITION = {
    ForceModelKind.COLLISION_PREDICTION,
    ForceModelKind.ELLIPTICAL,
    ForceModelKind.ELLIPTICAL_BIPARAMETER,
}
_TILT_VELOCITY = {ForceModelKind.COLLISION_PREDICTION, ForceModelKind.ELLIPTICAL_BIPARAMETER}


def resolve_tilt(force: ForceModelKind, tilt_position: bool, tilt_velocity: bool) -> Tuple[bool, bool]:
    """Tilt flags the model supports; position tilt wins when both are requested."""
    position = tilt_position and force in _TILT_POSITION
    velocity = tilt_velocity and not position and force in _TILT_VELOCITY
    return position, velocity


def model_label(
    force: ForceModelKind,
    attention: AttentionKind,
    tilt_position: bool = False,
    tilt_velocity: bool = False,
) -> str:
    position, velocity = resolve_tilt(force, tilt_position, tilt_velocity)
    label = _BASE_LABELS[force]
    if position:
        label += "-TP"
    elif velocity:
        label += "-TV"
    if attention == AttentionKind.LOGISTIC:
        label += "-Ours"
    return label
