from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol, Sequence

from pygame.math import Vector2

from ..utils.math2d import _ray_circle_distance, _ray_segment_distance, _safe_normalize

if TYPE_CHECKING:
    from .agent import Agent

WALL_HEIGHT = 2.0
ATTRACTOR_HEIGHT = 2.0
AGENT_HEIGHT = 2.0
# Ray heights above the ground plane.
WALL_QUERY_HEIGHT = 1.0
VISION_RAY_HEIGHT = 1.5


def wall_obstacle_id(wall_id: int) -> str:
    return f"wall:{wall_id}"


def attractor_obstacle_id(attractor_id: int) -> str:
    return f"attractor:{attractor_id}"


def agent_obstacle_id(agent_id: int) -> str:
    return f"agent:{agent_id}"


@dataclass(frozen=True, slots=True)
class WallSegment:
    id: int
    start: Vector2
    end: Vector2

    @property
    def obstacle_id(self) -> str:
        return wall_obstacle_id(self.id)

    @property
    def tangent(self) -> Vector2:
        return self.end - self.start

    def point_at(self, fraction: float) -> Vector2:
        return self.start + (self.end - self.start) * fraction


@dataclass(frozen=True, slots=True)
class Attractor:
    id: int
    name: str
    center: Vector2
    left: Vector2
    right: Vector2
    attractiveness: float

    @property
    def obstacle_id(self) -> str:
        return attractor_obstacle_id(self.id)

    @property
    def front_center(self) -> Vector2:
        return (self.left + self.right) / 2


@dataclass(frozen=True, slots=True)
class RayHit:
    distance: float
    obstacle_id: str
    point: Vector2


class Raycaster(Protocol):
    def raycast(
        self,
        origin: Vector2,
        direction: Vector2,
        max_distance: float,
        height: float = VISION_RAY_HEIGHT,
        exclude: Optional[str] = None,
        include_agents: bool = True,
    ) -> Optional[RayHit]:
        ...


class SceneRaycaster:
    """Planar raycaster over wall and attractor segments plus agent discs.

    Segments and discs extend from the ground up to a fixed height; a ray cast
    at ``height`` only meets obstacles at least that tall.
    """

    def __init__(
        self,
        walls: Sequence[WallSegment],
        attractors: Sequence[Attractor],
        agents: Callable[[], Iterable["Agent"]] | None = None,
    ) -> None:
        self._walls = list(walls)
        self._attractors = list(attractors)
        self._agents = agents

    def raycast(
        self,
        origin: Vector2,
        direction: Vector2,
        max_distance: float,
        height: float = VISION_RAY_HEIGHT,
        exclude: Optional[str] = None,
        include_agents: bool = True,
    ) -> Optional[RayHit]:
        unit = _safe_normalize(direction)
        if unit.length_squared() == 0.0 or max_distance <= 0.0:
            return None
        best_distance = max_distance
        best_id: str | None = None

        if height <= WALL_HEIGHT:
            for wall in self._walls:
                distance = _ray_segment_distance(origin, unit, wall.start, wall.end)
                if distance is not None and distance < best_distance:
                    best_distance = distance
                    best_id = wall.obstacle_id
        if height <= ATTRACTOR_HEIGHT:
            for attractor in self._attractors:
                distance = _ray_segment_distance(origin, unit, attractor.left, attractor.right)
                if distance is not None and distance < best_distance:
                    best_distance = distance
                    best_id = attractor.obstacle_id
        if include_agents and self._agents is not None and height <= AGENT_HEIGHT:
            reach = max_distance
            for agent in self._agents():
                obstacle_id = agent_obstacle_id(agent.id)
                if obstacle_id == exclude:
                    continue
                if origin.distance_to(agent.position) > reach + agent.radius:
                    continue
                distance = _ray_circle_distance(origin, unit, agent.position, agent.radius)
                if distance is not None and distance < best_distance:
                    best_distance = distance
                    best_id = obstacle_id

        if best_id is None:
            return None
        return RayHit(distance=best_distance, obstacle_id=best_id, point=origin + unit * best_distance)


def visual_coverage_angle(position: Vector2, attractor: Attractor) -> float:
    left = _safe_normalize(attractor.left - position)
    right = _safe_normalize(attractor.right - position)
    return math.acos(max(-1.0, min(1.0, left.dot(right))))
