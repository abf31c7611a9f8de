from __future__ import annotations

from typing import Iterable

from ..core.agent import Agent
from ..types.metrics import TickMetrics


def create_metrics(
    tick: int,
    spawned: int,
    removed: int,
    neighbor_checks: int,
    duration_ms: float,
    agents: Iterable[Agent],
) -> TickMetrics:
    population = 0
    attracted = 0
    speed_total = 0.0
    for agent in agents:
        population += 1
        speed_total += agent.velocity.length()
        if agent.attention.is_attracted:
            attracted += 1
    return TickMetrics(
        tick=tick,
        population=population,
        spawned=spawned,
        removed=removed,
        attracted=attracted,
        neighbor_checks=neighbor_checks,
        average_speed=speed_total / population if population else 0.0,
        tick_duration_ms=duration_ms,
    )
