from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List


@dataclass(slots=True)
class AgentRecord:
    id: int
    name: str
    origin_label: str
    destination_label: str
    sim_time: float
    x: float
    y: float
    vx: float
    vy: float
    speed: float
    desired_speed: float
    neutral_speed: float
    visibility: float
    distance_to_attractor: float
    angular_sweep_rate: float
    cumulative_gaze: float
    attraction_score: float
    is_attracted: bool
    angle_to_attractor: float
    small_angle: float
    large_angle: float
    separation_angle: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def record_fields() -> List[str]:
    return [item.name for item in fields(AgentRecord)]
