from __future__ import annotations

import math
from bisect import bisect_right
from typing import List, Sequence

from pygame.math import Vector2

from ..core.agent import AgentSpec
from ..core.config import FlowConfig
from ..core.rng import DeterministicRng

SAMPLE_COUNT = 100
# Density parameters were fitted on a 5.4 m wide corridor, in centimetres.
REFERENCE_WIDTH_CM = 540.0


def density_cdf(config: FlowConfig, samples: int = SAMPLE_COUNT) -> List[float]:
    """Cumulative lateral density across the corridor, from the left wall to the right.

    Each sample is a Boltzmann weight ``exp(-u)`` of a potential that repels
    from both walls and pulls toward the preferred lane.
    """
    length = REFERENCE_WIDTH_CM
    wall = config.factor_dist_to_wall
    width = config.factor_flow_width * length
    peak = config.factor_max_density * length
    wrong_side = config.factor_wrong_side * length

    weights = []
    for index in range(samples):
        x = length / samples * index
        if x <= 0.0 or x >= length:
            weights.append(0.0)
            continue
        delta = x - peak if abs(x - peak) < wrong_side else wrong_side
        potential = wall / x + wall / (length - x) + (delta / width) ** 2
        weights.append(math.exp(-potential))

    total = sum(weights)
    if total <= 0.0:
        return [index / samples for index in range(samples)]
    cdf = []
    running = 0.0
    for weight in weights:
        cdf.append(running)
        running += weight / total
    return cdf


def sample_index(cdf: Sequence[float], draw: float) -> int:
    index = bisect_right(cdf, draw)
    if index >= len(cdf):
        return len(cdf) - 1
    return index


def neutral_speed(lateral: float, config: FlowConfig, rng: DeterministicRng) -> float:
    """Mean speed is quadratic in the lateral offset; centimetre constants, metres per second out."""
    offset_cm = lateral / config.corridor_width * REFERENCE_WIDTH_CM
    noise = rng.next_gaussian() * config.neutral_speed_std
    return (config.neutral_speed_weight * offset_cm * offset_cm + config.neutral_speed_intercept + noise) / 100.0


class FlowSpawner:
    def __init__(self, config: FlowConfig, rng: DeterministicRng, time_step: float) -> None:
        self.config = config
        self._rng = rng
        self._time_step = time_step
        self._cdf: List[float] = []
        self._elapsed = 0.0
        self._next_spawn = 0.0
        self._count = 0
        self.reboot()

    @property
    def spawned(self) -> int:
        return self._count

    def reboot(self) -> None:
        self._rng.reset()
        self._cdf = density_cdf(self.config)
        self._elapsed = 0.0
        self._next_spawn = 0.0
        self._count = 0

    def lateral_offset(self) -> float:
        ratio = sample_index(self._cdf, self._rng.next_float()) / len(self._cdf)
        if self.config.flip:
            return (0.5 - ratio) * self.config.corridor_width
        return (ratio - 0.5) * self.config.corridor_width

    def step(self) -> List[AgentSpec]:
        specs: List[AgentSpec] = []
        while self._elapsed >= self._next_spawn:
            specs.append(self._next_spec())
            self._next_spawn += max(self._rng.next_exponential(self.config.spawn_interval), self._time_step)
        self._elapsed += self._time_step
        return specs

    def _next_spec(self) -> AgentSpec:
        config = self.config
        lateral = self.lateral_offset()
        speed = neutral_speed(lateral, config, self._rng)
        spec = AgentSpec(
            origin=Vector2(config.origin[0], config.origin[1] + lateral),
            destination=Vector2(config.destination[0], config.destination[1] + lateral),
            name=f"{config.name}-{self._count}",
            origin_label=config.name,
            destination_label=config.destination_label,
            desired_speed=speed if speed > 0.0 else None,
        )
        self._count += 1
        return spec
