from __future__ import annotations

from typing import List, Protocol

from pygame.math import Vector2


class Navigator(Protocol):
    def get_path(self, position: Vector2, destination: Vector2) -> List[Vector2]:
        ...

    def snap_to_ground(self, position: Vector2) -> Vector2:
        ...


class StraightLineNavigator:
    """Walks straight at the destination over flat ground."""

    def get_path(self, position: Vector2, destination: Vector2) -> List[Vector2]:
        return [Vector2(destination)]

    def snap_to_ground(self, position: Vector2) -> Vector2:
        return position
