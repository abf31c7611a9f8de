from __future__ import annotations

from pygame.math import Vector2

from crowdsim.sim.core.geometry import WallSegment
from crowdsim.sim.scenes import corridor_surface
from crowdsim.sim.systems.boundary import (
    edge_key,
    extract_boundary_edges,
    quantize_vertex,
    read_wall_csv,
    write_wall_csv,
)
from crowdsim.sim.utils.math2d import _signed_angle


def _grid_with_doorway(size: int = 3, hole: tuple[int, int] = (1, 1)):
    """Unit-square grid on the ground plane with one square punched out."""
    vertices = [(float(x), 0.0, float(z)) for z in range(size + 1) for x in range(size + 1)]
    triangles = []
    for cz in range(size):
        for cx in range(size):
            if (cx, cz) == hole:
                continue
            v00 = cz * (size + 1) + cx
            v10 = v00 + 1
            v01 = v00 + size + 1
            v11 = v01 + 1
            triangles.extend((v00, v01, v10))
            triangles.extend((v01, v11, v10))
    areas = [0] * (len(triangles) // 3)
    return vertices, triangles, areas


def _reverse_winding(triangles):
    flipped = []
    for base in range(0, len(triangles), 3):
        a, b, c = triangles[base : base + 3]
        flipped.extend((a, c, b))
    return flipped


def _undirected(walls):
    return {frozenset({(w.start.x, w.start.y), (w.end.x, w.end.y)}) for w in walls}


def _expected_doorway_edges(size: int = 3, hole: tuple[int, int] = (1, 1)):
    edges = set()
    for i in range(size):
        edges.add(frozenset({(float(i), 0.0), (float(i + 1), 0.0)}))
        edges.add(frozenset({(float(i), float(size)), (float(i + 1), float(size))}))
        edges.add(frozenset({(0.0, float(i)), (0.0, float(i + 1))}))
        edges.add(frozenset({(float(size), float(i)), (float(size), float(i + 1))}))
    hx, hz = hole
    corners = [(hx, hz), (hx + 1, hz), (hx + 1, hz + 1), (hx, hz + 1)]
    for index in range(4):
        a = tuple(float(c) for c in corners[index])
        b = tuple(float(c) for c in corners[(index + 1) % 4])
        edges.add(frozenset({a, b}))
    return edges


def test_doorway_perimeter_edges_each_once():
    vertices, triangles, areas = _grid_with_doorway()
    walls = extract_boundary_edges(vertices, triangles, areas)

    assert len(walls) == 16
    assert _undirected(walls) == _expected_doorway_edges()
    assert [wall.id for wall in walls] == list(range(16))


def test_extraction_independent_of_winding():
    vertices, triangles, areas = _grid_with_doorway()
    forward = extract_boundary_edges(vertices, triangles, areas)
    backward = extract_boundary_edges(vertices, _reverse_winding(triangles), areas)

    assert len(forward) == len(backward)
    assert _undirected(forward) == _undirected(backward)


def test_zero_triangles_yield_no_walls():
    assert extract_boundary_edges([], [], []) == []


def test_non_navigable_triangles_are_ignored():
    vertices, triangles, areas = _grid_with_doorway(size=1, hole=(-1, -1))
    walls = extract_boundary_edges(vertices, triangles, [1, 1])
    assert walls == []

    walls = extract_boundary_edges(vertices, triangles, [0, 0])
    assert len(walls) == 4


def test_edge_keys_quantize_and_ignore_order():
    first = (1.0, 0.0, 2.0)
    second = (1.004, 0.0, 2.0)
    assert quantize_vertex(first) == quantize_vertex(second) == (100, 0, 200)
    assert edge_key(first, (3.0, 0.0, 4.0)) == edge_key((3.0, 0.0, 4.0), second)


def test_nearly_coincident_vertices_share_an_edge():
    vertices = [
        (0.0, 0.0, 0.0),
        (0.0, 0.0, 1.0),
        (1.0, 0.0, 0.0),
        (0.001, 0.0, 1.0),
        (1.0, 0.0, 1.0),
        (1.002, 0.0, 0.0),
    ]
    triangles = [0, 1, 2, 3, 4, 5]
    walls = extract_boundary_edges(vertices, triangles, [0, 0])
    assert len(walls) == 4


def test_clockwise_corridor_walls_face_the_walkway():
    surface = corridor_surface(length=10.0, width=4.0, sections=5)
    walls = extract_boundary_edges(surface.vertices, surface.triangles, surface.areas)

    assert len(walls) == 12
    inside = Vector2(0.5, 0.25)
    for wall in walls:
        assert _signed_angle(wall.tangent, inside - wall.start) < 0.0


def test_wall_csv_round_trip(tmp_path):
    walls = [
        WallSegment(id=0, start=Vector2(0.0, 0.0), end=Vector2(2.0, 0.0)),
        WallSegment(id=1, start=Vector2(2.0, 0.0), end=Vector2(2.0, 3.5)),
    ]
    path = tmp_path / "walls.csv"
    write_wall_csv(walls, path)

    assert path.read_text().splitlines()[0] == "x1,y1,z1,x2,y2,z2"
    assert read_wall_csv(path) == walls
