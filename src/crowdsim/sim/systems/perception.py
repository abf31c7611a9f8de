from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple

from pygame.math import Vector2

from ..core.agent import Agent
from ..core.geometry import WALL_QUERY_HEIGHT, Attractor, Raycaster, WallSegment
from ..core.spatial_grid import SegmentIndex, SpatialGrid
from ..utils.math2d import _closest_point_on_segment, _signed_angle

# Fractions along a wall checked for line of sight besides its nearest point.
_SIGHT_FRACTIONS = (0.5, 0.75)
_SIGHT_RANGE = 1e6


class Perception:
    """Keeps each agent's neighbor, wall and attractor sets and answers wall queries."""

    def __init__(
        self,
        cell_size: float,
        walls: Mapping[int, WallSegment],
        attractors: Mapping[int, Attractor],
        raycaster: Raycaster,
    ) -> None:
        self._cell_size = cell_size
        self._grid = SpatialGrid(cell_size)
        self._walls = walls
        self._attractors = attractors
        self._raycaster = raycaster
        self._wall_index: SegmentIndex[WallSegment] = SegmentIndex(cell_size)
        self._attractor_index: SegmentIndex[Attractor] = SegmentIndex(cell_size)
        self._neighbor_scratch: List[Agent] = []
        self.neighbor_checks = 0
        self.rebuild_static()

    def rebuild_static(self) -> None:
        self._wall_index = SegmentIndex(self._cell_size)
        for wall in self._walls.values():
            self._wall_index.insert(wall.id, wall.start, wall.end, wall)
        self._attractor_index = SegmentIndex(self._cell_size)
        for attractor in self._attractors.values():
            self._attractor_index.insert(attractor.id, attractor.left, attractor.right, attractor)

    def refresh(self, agents: Iterable[Agent]) -> None:
        agent_list = list(agents)
        self._grid.clear()
        for agent in agent_list:
            self._grid.insert(agent)

        checks = 0
        scratch = self._neighbor_scratch
        for agent in agent_list:
            radius = agent.perception_radius
            self._grid.collect_neighbors(agent.position, radius, scratch, exclude_id=agent.id)
            checks += len(scratch)
            agent.perceived_neighbors = tuple(sorted(other.id for other in scratch))
            agent.perceived_walls = tuple(key for key, _ in self._wall_index.query(agent.position, radius))
            agent.perceived_attractors = tuple(
                key for key, _ in self._attractor_index.query(agent.position, radius)
            )
        scratch.clear()
        self.neighbor_checks = checks

    def query_walls(self, agent: Agent, position: Optional[Vector2] = None) -> List[Tuple[Vector2, WallSegment]]:
        """
        Nearest points of the perceived walls the agent faces and can actually see.

        A wall counts when the agent stands on its front side and at least one of
        three sight lines (toward the nearest point, the midpoint and the 3/4 point)
        hits that wall first. Results are ordered by wall id.
        """

        if position is None:
            position = agent.position
        results: List[Tuple[Vector2, WallSegment]] = []
        for wall_id in agent.perceived_walls:
            wall = self._walls.get(wall_id)
            if wall is None:
                continue
            tangent = wall.tangent
            if tangent.length_squared() <= 0.0:
                continue
            if _signed_angle(tangent, position - wall.start) >= 0.0:
                continue
            closest = _closest_point_on_segment(position, wall.start, wall.end)
            targets = [closest] + [wall.point_at(fraction) for fraction in _SIGHT_FRACTIONS]
            if any(self._first_hit_is(position, target, wall) for target in targets):
                results.append((closest, wall))
        return results

    def _first_hit_is(self, origin: Vector2, target: Vector2, wall: WallSegment) -> bool:
        direction = target - origin
        if direction.length_squared() <= 0.0:
            return True
        hit = self._raycaster.raycast(
            origin,
            direction,
            _SIGHT_RANGE,
            height=WALL_QUERY_HEIGHT,
            include_agents=False,
        )
        return hit is not None and hit.obstacle_id == wall.obstacle_id

    def neighbors_of(self, agent: Agent, agents: Mapping[int, Agent]) -> List[Agent]:
        return [agents[other_id] for other_id in agent.perceived_neighbors if other_id in agents]

    def attractors_of(self, agent: Agent) -> List[Attractor]:
        return [self._attractors[key] for key in agent.perceived_attractors if key in self._attractors]
