from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .metrics import TickMetrics


@dataclass(slots=True)
class Snapshot:
    tick: int
    metrics: TickMetrics
    agents: List[Dict[str, Any]]
    scene: "SnapshotScene"
    metadata: "SnapshotMetadata"


@dataclass(slots=True)
class SnapshotScene:
    walls: List[Dict[str, float]]
    attractors: List[Dict[str, Any]]


@dataclass(slots=True)
class SnapshotMetadata:
    sim_dt: float
    sim_time: float
    seed: int
    experiment_name: str
    config_version: str
    model: str = ""
