from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

from ..core.agent import Agent
from ..types.telemetry import AgentRecord, record_fields

logger = logging.getLogger("crowdsim.sim.telemetry")

TelemetrySink = Callable[[List[AgentRecord]], None]


def build_record(agent: Agent, sim_time: float) -> AgentRecord:
    state = agent.attention
    return AgentRecord(
        id=agent.id,
        name=agent.name,
        origin_label=agent.origin_label,
        destination_label=agent.destination_label,
        sim_time=sim_time,
        x=agent.position.x,
        y=agent.position.y,
        vx=agent.velocity.x,
        vy=agent.velocity.y,
        speed=agent.velocity.length(),
        desired_speed=agent.desired_speed,
        neutral_speed=state.neutral_speed,
        visibility=state.visibility,
        distance_to_attractor=state.distance_to_attractor,
        angular_sweep_rate=state.angular_sweep_rate,
        cumulative_gaze=state.cumulative_gaze,
        attraction_score=state.max_score,
        is_attracted=state.is_attracted,
        angle_to_attractor=state.angle_to_attractor,
        small_angle=state.small_angle,
        large_angle=state.large_angle,
        separation_angle=state.separation_angle,
    )


class TelemetryRecorder:
    """Samples agent records on a fixed tick cadence and hands each batch to every sink.

    A failing sink is logged and skipped; it never interrupts the simulation.
    """

    def __init__(self, interval: int, x_bounds: Tuple[float, float]) -> None:
        self.interval = max(1, int(interval))
        self.x_bounds = x_bounds
        self.records: List[AgentRecord] = []
        self._sinks: List[TelemetrySink] = []

    def add_sink(self, sink: TelemetrySink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: TelemetrySink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def reset(self) -> None:
        self.records.clear()

    def sample(self, agents: Iterable[Agent], tick: int, sim_time: float) -> List[AgentRecord]:
        if tick % self.interval != 0:
            return []
        low, high = self.x_bounds
        batch = [build_record(agent, sim_time) for agent in agents if low < agent.position.x < high]
        if not batch:
            return batch
        self.records.extend(batch)
        for sink in list(self._sinks):
            try:
                sink(batch)
            except Exception:
                logger.warning("Telemetry sink %r failed at tick %d", sink, tick, exc_info=True)
        return batch


def write_records_csv(records: Iterable[AgentRecord], path: Path) -> None:
    with Path(path).open("w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=record_fields())
        writer.writeheader()
        for record in records:
            writer.writerow(record.to_dict())
