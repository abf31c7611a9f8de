from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, Generic, List, Tuple, TypeVar

from pygame.math import Vector2

from ..utils.math2d import _distance_to_segment

if TYPE_CHECKING:
    from .agent import Agent

_T = TypeVar("_T")


class SpatialGrid:
    def __init__(self, cell_size: float) -> None:
        self._cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List["Agent"]] = {}
        self._active_keys: List[Tuple[int, int]] = []

    def clear(self) -> None:
        for key in self._active_keys:
            bucket = self._cells.get(key)
            if bucket:
                bucket.clear()
        self._active_keys.clear()

    def insert(self, agent: "Agent") -> None:
        key = self._cell_key(agent.position)
        bucket = self._cells.get(key)
        if bucket is None:
            bucket = []
            self._cells[key] = bucket
            self._active_keys.append(key)
        elif not bucket:
            # Bucket exists but was cleared at the start of this tick; mark it active again.
            self._active_keys.append(key)
        bucket.append(agent)

    def collect_neighbors(
        self,
        position: Vector2,
        radius: float,
        out_agents: List["Agent"],
        exclude_id: int | None = None,
    ) -> None:
        """
        Fill ``out_agents`` with every agent within ``radius`` of ``position``.

        The buffer is cleared first; callers own it and reuse it across queries.
        """

        out_agents.clear()
        base_key = self._cell_key(position)
        cell_range = int(math.ceil(radius / self._cell_size))
        radius_sq = radius * radius
        pos_x = position.x
        pos_y = position.y

        cells = self._cells
        append_agent = out_agents.append

        for dx in range(-cell_range, cell_range + 1):
            for dy in range(-cell_range, cell_range + 1):
                bucket = cells.get((base_key[0] + dx, base_key[1] + dy))
                if not bucket:
                    continue
                for agent in bucket:
                    if exclude_id is not None and agent.id == exclude_id:
                        continue
                    pos = agent.position
                    offset_x = pos.x - pos_x
                    offset_y = pos.y - pos_y
                    if offset_x * offset_x + offset_y * offset_y <= radius_sq:
                        append_agent(agent)

    def _cell_key(self, position: Vector2) -> Tuple[int, int]:
        return (int(position.x // self._cell_size), int(position.y // self._cell_size))


class SegmentIndex(Generic[_T]):
    """Static bucket index of line segments keyed by every cell their bounds touch."""

    def __init__(self, cell_size: float) -> None:
        self._cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self._segments: List[Tuple[Vector2, Vector2, int, _T]] = []

    def __len__(self) -> int:
        return len(self._segments)

    def insert(self, key: int, start: Vector2, end: Vector2, item: _T) -> None:
        slot = len(self._segments)
        self._segments.append((Vector2(start), Vector2(end), key, item))
        min_x, max_x = sorted((start.x, end.x))
        min_y, max_y = sorted((start.y, end.y))
        low = self._cell_key(min_x, min_y)
        high = self._cell_key(max_x, max_y)
        for cx in range(low[0], high[0] + 1):
            for cy in range(low[1], high[1] + 1):
                self._cells.setdefault((cx, cy), []).append(slot)

    def query(self, position: Vector2, radius: float) -> List[Tuple[int, _T]]:
        """Items whose segment passes within ``radius`` of ``position``, ordered by key."""
        base = self._cell_key(position.x, position.y)
        cell_range = int(math.ceil(radius / self._cell_size))
        seen: set[int] = set()
        found: List[Tuple[int, _T]] = []
        for dx in range(-cell_range, cell_range + 1):
            for dy in range(-cell_range, cell_range + 1):
                for slot in self._cells.get((base[0] + dx, base[1] + dy), ()):
                    if slot in seen:
                        continue
                    seen.add(slot)
                    start, end, key, item = self._segments[slot]
                    if _distance_to_segment(position, start, end) <= radius:
                        found.append((key, item))
        found.sort(key=lambda entry: entry[0])
        return found

    def _cell_key(self, x: float, y: float) -> Tuple[int, int]:
        return (int(x // self._cell_size), int(y // self._cell_size))
