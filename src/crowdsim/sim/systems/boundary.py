from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from pygame.math import Vector2

from ..core.geometry import WallSegment

Vertex = Tuple[float, float, float]
VertexKey = Tuple[int, int, int]
EdgeKey = Tuple[VertexKey, VertexKey]

_QUANTUM = 100.0
_CSV_HEADER = ["x1", "y1", "z1", "x2", "y2", "z2"]


def quantize_vertex(vertex: Vertex) -> VertexKey:
    return (
        int(round(vertex[0] * _QUANTUM)),
        int(round(vertex[1] * _QUANTUM)),
        int(round(vertex[2] * _QUANTUM)),
    )


def edge_key(first: Vertex, second: Vertex) -> EdgeKey:
    key_a = quantize_vertex(first)
    key_b = quantize_vertex(second)
    return (key_a, key_b) if key_a <= key_b else (key_b, key_a)


def _ground(vertex: Vertex) -> Vector2:
    # Vertices are (x, height, z); walls live on the ground plane.
    return Vector2(vertex[0], vertex[2])


def extract_boundary_edges(
    vertices: Sequence[Vertex],
    triangles: Sequence[int],
    areas: Sequence[int],
    navigable_area: int = 0,
) -> List[WallSegment]:
    """
    Turn a triangulated walkable surface into wall segments along its perimeter.

    An edge shared by two tagged triangles is interior; an edge touched by exactly
    one is on the boundary. Segments keep the endpoint order of the first triangle
    that produced them, so consistently wound meshes give walls facing the interior.
    """

    counts: Dict[EdgeKey, int] = {}
    endpoints: Dict[EdgeKey, Tuple[Vertex, Vertex]] = {}

    triangle_count = min(len(areas), len(triangles) // 3)
    for index in range(triangle_count):
        if areas[index] != navigable_area:
            continue
        base = index * 3
        corners = (triangles[base], triangles[base + 1], triangles[base + 2])
        for offset in range(3):
            first = vertices[corners[offset]]
            second = vertices[corners[(offset + 1) % 3]]
            key = edge_key(first, second)
            if key in counts:
                counts[key] += 1
            else:
                counts[key] = 1
                endpoints[key] = (first, second)

    walls: List[WallSegment] = []
    for key, count in counts.items():
        if count != 1:
            continue
        first, second = endpoints[key]
        walls.append(WallSegment(id=len(walls), start=_ground(first), end=_ground(second)))
    return walls


def read_wall_csv(path: Path) -> List[WallSegment]:
    walls: List[WallSegment] = []
    with Path(path).open(newline="") as handle:
        reader = csv.reader(handle)
        next(reader, None)
        for row in reader:
            if not row:
                continue
            x1, _y1, z1, x2, _y2, z2 = (float(value) for value in row[:6])
            walls.append(WallSegment(id=len(walls), start=Vector2(x1, z1), end=Vector2(x2, z2)))
    return walls


def write_wall_csv(walls: Sequence[WallSegment], path: Path) -> None:
    with Path(path).open("w", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(_CSV_HEADER)
        for wall in walls:
            writer.writerow([wall.start.x, 0.0, wall.start.y, wall.end.x, 0.0, wall.end.y])
