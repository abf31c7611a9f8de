from __future__ import annotations

from typing import List

from .core.config import AttractorConfig, FlowConfig, SceneConfig, SurfaceConfig

# Store windows sit just inside the corridor so sight lines meet them before the wall.
WINDOW_INSET = 0.05


def corridor_surface(length: float, width: float, sections: int) -> SurfaceConfig:
    """Corridor centred on the origin along x, split into ``sections`` quads of two triangles.

    Triangles wind clockwise seen from above, so the extracted walls face the walkway.
    """
    sections = max(1, sections)
    half_length = length / 2.0
    half_width = width / 2.0
    vertices: List[tuple[float, float, float]] = []
    for index in range(sections + 1):
        x = -half_length + length * index / sections
        vertices.append((x, 0.0, -half_width))
        vertices.append((x, 0.0, half_width))

    triangles: List[int] = []
    for index in range(sections):
        bottom, top = 2 * index, 2 * index + 1
        next_bottom, next_top = bottom + 2, top + 2
        triangles.extend((bottom, top, next_bottom))
        triangles.extend((top, next_top, next_bottom))
    return SurfaceConfig(vertices=vertices, triangles=triangles, areas=[0] * (2 * sections))


def corridor_scene(
    length: float = 40.0,
    width: float = 5.4,
    sections: int = 20,
    store_start: float = -3.0,
    store_end: float = 3.0,
    store_depth: float = 2.0,
    attractiveness: float = 6.0,
) -> SceneConfig:
    window = width / 2.0 - WINDOW_INSET
    store = AttractorConfig(
        name="store",
        center=((store_start + store_end) / 2.0, width / 2.0 + store_depth / 2.0),
        left=(store_end, window),
        right=(store_start, window),
        attractiveness=attractiveness,
    )
    return SceneConfig(surface=corridor_surface(length, width, sections), attractors=[store])


def corridor_flows(length: float = 40.0, width: float = 5.4, spawn_interval: float = 10.0) -> List[FlowConfig]:
    west = -length / 2.0 + 1.0
    east = length / 2.0 - 0.5
    return [
        FlowConfig(
            name="west",
            origin=(west, 0.0),
            destination=(east, 0.0),
            destination_label="east",
            spawn_interval=spawn_interval,
            corridor_width=width,
            flip=False,
        ),
        FlowConfig(
            name="east",
            origin=(east, 0.0),
            destination=(west, 0.0),
            destination_label="west",
            spawn_interval=spawn_interval,
            corridor_width=width,
            flip=True,
        ),
    ]
