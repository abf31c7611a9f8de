from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional, Tuple

from pygame.math import Vector2

from .rng import DeterministicRng


class ForceModelKind(str, Enum):
    SOCIAL_FORCE = "sfm"
    COLLISION_PREDICTION = "sfm-cp"
    ELLIPTICAL = "sfm-es"
    ELLIPTICAL_BIPARAMETER = "sfm-nes"
    VISION_UTILITY = "moussaid"


class AttentionKind(str, Enum):
    NONE = "none"
    PREFERENCE = "preference"
    LOGISTIC = "logistic"


@dataclass(slots=True)
class AttentionState:
    is_attracted: bool = False
    neutral_speed: float = 0.0
    noticed_attractor_id: Optional[int] = None
    scores: Dict[int, float] = field(default_factory=dict)
    cumulative_gaze: float = 0.0
    max_score: float = 0.0
    visibility: float = 0.0
    angle_to_attractor: float = 0.0
    distance_to_attractor: float = 0.0
    angular_sweep_rate: float = 0.0
    small_angle: float = math.nan
    large_angle: float = math.nan
    separation_angle: float = math.nan


@dataclass(slots=True)
class AgentSpec:
    origin: Vector2
    destination: Vector2
    name: str = ""
    origin_label: str = ""
    destination_label: str = ""
    desired_speed: Optional[float] = None
    mass: Optional[float] = None
    radius: Optional[float] = None
    force_model: Optional[str] = None
    attention_model: Optional[str] = None
    tilt_position: Optional[bool] = None
    tilt_velocity: Optional[bool] = None


@dataclass(slots=True)
class Agent:
    id: int
    name: str
    position: Vector2
    velocity: Vector2
    destination: Vector2
    mass: float
    radius: float
    desired_speed: float
    force_model: ForceModelKind
    attention_model: AttentionKind
    rng: DeterministicRng
    origin_label: str = ""
    destination_label: str = ""
    perception_radius: float = 3.0
    tilt_position: bool = False
    tilt_velocity: bool = False
    wall_force_weight: float = 1.0
    ideal_angular_speed: float = 0.0
    path: Deque[Vector2] = field(default_factory=deque)
    path_timer: int = 0
    noise_force: Vector2 = field(default_factory=Vector2)
    noise_timer: int = 0
    preferences: Dict[int, float] = field(default_factory=dict)
    perceived_neighbors: Tuple[int, ...] = ()
    perceived_walls: Tuple[int, ...] = ()
    perceived_attractors: Tuple[int, ...] = ()
    attention: AttentionState = field(default_factory=AttentionState)
    active: bool = True
