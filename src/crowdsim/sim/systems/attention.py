from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from pygame.math import Vector2

from ..core.agent import Agent, AttentionKind
from ..core.config import AttentionConfig, LogisticConfig
from ..core.geometry import Attractor, Raycaster, agent_obstacle_id, visual_coverage_angle
from ..utils.math2d import _sigmoid, _unsigned_angle
from . import vision

# Scores at or below this floor never select a candidate.
SCORE_FLOOR = -1000.0


@dataclass(slots=True)
class AttractorFeatures:
    coverage: float
    angle: float
    small_angle: float
    large_angle: float
    separation_angle: float
    distance: float
    visibility: float
    shortest_ray: float


def refresh_interval_ticks(refresh_interval_seconds: float, time_step: float) -> int:
    if time_step <= 0.0:
        return 1
    return max(1, int(round(refresh_interval_seconds / time_step)))


def angular_sweep_rate(position: Vector2, velocity: Vector2, center: Vector2) -> float:
    """Angular speed at which the attractor center sweeps across the agent's view."""
    offset = center - position
    distance = offset.length()
    if distance < 1e-9:
        return 0.0
    angle = _unsigned_angle(velocity, offset)
    tangential = velocity.length() * math.sin(angle)
    return abs(tangential) / distance


def poly_logistic(features: Sequence[float], model: LogisticConfig) -> float:
    z = model.intercept
    for value, mean, std, weight in zip(features, model.means, model.stds, model.weights):
        z += (value - mean) / std * weight
    return _sigmoid(z)


class AttentionModel:
    """Never attracted; features are still measured for telemetry."""

    kind = AttentionKind.NONE

    def __init__(self, config: AttentionConfig) -> None:
        self._config = config

    def score(self, agent: Agent, attractor: Attractor, features: AttractorFeatures) -> float:
        return SCORE_FLOOR

    def attracted(self, agent: Agent, candidate: Optional[int], max_score: float) -> bool:
        return False


class PreferenceAttention(AttentionModel):
    """Personal preference times attractiveness times proximity/visibility (Wang 2014)."""

    kind = AttentionKind.PREFERENCE

    def score(self, agent: Agent, attractor: Attractor, features: AttractorFeatures) -> float:
        config = self._config
        preference = agent.preferences.get(attractor.id)
        if preference is None:
            preference = agent.rng.next_truncated_gaussian(config.preference_mean, config.preference_std, 0.0)
            agent.preferences[attractor.id] = preference
        distance_score = 1.0 - features.shortest_ray / config.vision.range
        weight = config.distance_weight
        score = preference * attractor.attractiveness * (
            distance_score * weight + features.visibility * (1.0 - weight)
        )
        return score + agent.rng.next_range(0.0, min(score / 2.0, 1.0 - score))

    def attracted(self, agent: Agent, candidate: Optional[int], max_score: float) -> bool:
        return candidate is not None and max_score > self._config.demand_threshold


class LogisticAttention(AttentionModel):
    """Separate logistic models for starting and for keeping a gaze, sampled as Bernoulli draws.

    While idle the start model gives the chance of starting to gaze; while
    gazing the stop model gives the chance of carrying on.
    """

    kind = AttentionKind.LOGISTIC

    @staticmethod
    def inputs(features: AttractorFeatures) -> List[float]:
        angle = features.angle
        separation = features.separation_angle
        return [angle, separation, angle * angle, separation * separation, separation * angle]

    def score(self, agent: Agent, attractor: Attractor, features: AttractorFeatures) -> float:
        model = self._config.stop_model if agent.attention.is_attracted else self._config.start_model
        return poly_logistic(self.inputs(features), model)

    def attracted(self, agent: Agent, candidate: Optional[int], max_score: float) -> bool:
        if candidate is None:
            return False
        return agent.rng.next_float() < max_score


def build_models(config: AttentionConfig) -> Dict[AttentionKind, AttentionModel]:
    return {
        AttentionKind.NONE: AttentionModel(config),
        AttentionKind.PREFERENCE: PreferenceAttention(config),
        AttentionKind.LOGISTIC: LogisticAttention(config),
    }


class AttentionEngine:
    def __init__(
        self,
        config: AttentionConfig,
        time_step: float,
        attractors: Mapping[int, Attractor],
        raycaster: Raycaster,
        gazing_locomotion: bool = True,
    ) -> None:
        self._config = config
        self._time_step = time_step
        self._attractors = attractors
        self._raycaster = raycaster
        self._models = build_models(config)
        self.gazing_locomotion = gazing_locomotion
        self.refresh_interval = refresh_interval_ticks(config.refresh_interval_seconds, time_step)

    def model(self, kind: AttentionKind) -> AttentionModel:
        return self._models[kind]

    def update(self, agent: Agent, tick: int) -> None:
        state = agent.attention
        if state.is_attracted and self.gazing_locomotion:
            self._regulate_speed(agent)
        if state.is_attracted:
            state.cumulative_gaze += self._time_step
        if tick % self.refresh_interval == 0:
            self.refresh(agent)

    def refresh(self, agent: Agent) -> None:
        state = agent.attention
        model = self._models[agent.attention_model]
        vision_config = self._config.vision
        rays = vision.construct_rays(agent.velocity, vision_config.half_angle_deg, vision_config.ray_count, agent.rng)

        state.scores.clear()
        best_score = SCORE_FLOOR
        best_id: Optional[int] = None
        best_features: Optional[AttractorFeatures] = None
        for attractor_id in agent.perceived_attractors:
            attractor = self._attractors.get(attractor_id)
            if attractor is None:
                continue
            features = self.measure(agent, attractor, rays)
            if features.coverage < self._config.min_coverage_angle:
                score = -math.inf
            else:
                score = model.score(agent, attractor, features)
            state.scores[attractor_id] = score
            if score > best_score:
                best_score = score
                best_id = attractor_id
                best_features = features

        state.max_score = best_score
        state.noticed_attractor_id = best_id
        if best_features is not None:
            self._record(agent, self._attractors[best_id], best_features)

        attracted = model.attracted(agent, best_id, best_score)
        if attracted and not state.is_attracted:
            state.neutral_speed = agent.desired_speed
        elif state.is_attracted and not attracted:
            agent.desired_speed = state.neutral_speed
        state.is_attracted = attracted

    def measure(self, agent: Agent, attractor: Attractor, rays: Sequence[Vector2]) -> AttractorFeatures:
        position = agent.position
        velocity = agent.velocity
        to_left = attractor.left - position
        to_right = attractor.right - position
        left_angle = _unsigned_angle(velocity, to_left)
        right_angle = _unsigned_angle(velocity, to_right)
        to_front = attractor.front_center - position

        vision_range = self._config.vision.range
        distances = vision.cast_rays(
            self._raycaster,
            rays,
            position,
            attractor.obstacle_id,
            vision_range,
            exclude=agent_obstacle_id(agent.id),
        )
        return AttractorFeatures(
            coverage=visual_coverage_angle(position, attractor),
            angle=_unsigned_angle(velocity, to_front),
            small_angle=min(left_angle, right_angle),
            large_angle=max(left_angle, right_angle),
            separation_angle=_unsigned_angle(to_left, to_right),
            distance=to_front.length(),
            visibility=vision.visibility_score(distances, vision_range),
            shortest_ray=min(distances) if distances else vision_range,
        )

    def _record(self, agent: Agent, attractor: Attractor, features: AttractorFeatures) -> None:
        state = agent.attention
        state.visibility = features.visibility
        state.angle_to_attractor = features.angle
        state.distance_to_attractor = features.distance
        state.small_angle = features.small_angle
        state.large_angle = features.large_angle
        state.separation_angle = features.separation_angle
        state.angular_sweep_rate = angular_sweep_rate(agent.position, agent.velocity, attractor.center)

    def _regulate_speed(self, agent: Agent) -> None:
        state = agent.attention
        attractor = self._attractors.get(state.noticed_attractor_id) if state.noticed_attractor_id is not None else None
        if attractor is None:
            return
        omega = angular_sweep_rate(agent.position, agent.velocity, attractor.center)
        state.angular_sweep_rate = omega
        factor = 1.0 if omega <= 0.0 else min(agent.ideal_angular_speed / omega, 1.0)
        agent.desired_speed = state.neutral_speed * factor
