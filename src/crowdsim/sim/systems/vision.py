from __future__ import annotations

from typing import List, Optional, Sequence

from pygame.math import Vector2

from ..core.geometry import VISION_RAY_HEIGHT, Raycaster
from ..core.rng import DeterministicRng
from ..utils.math2d import _safe_normalize

_MIN_HEADING_SQ = 1e-12


def construct_rays(
    heading: Vector2,
    half_angle_deg: float,
    ray_count: int,
    rng: DeterministicRng,
) -> List[Vector2]:
    """Symmetric fan of unit directions centered on ``heading``.

    A stationary heading is replaced by a Gaussian jitter direction so the fan
    is always defined.
    """
    if ray_count <= 0:
        return []
    if heading.length_squared() < _MIN_HEADING_SQ:
        heading = rng.next_gaussian_vector()
        if heading.length_squared() < _MIN_HEADING_SQ:
            heading = Vector2(1.0, 0.0)
    center = _safe_normalize(heading)
    if ray_count == 1:
        return [center]
    step = 2.0 * half_angle_deg / (ray_count - 1)
    return [center.rotate(-half_angle_deg + step * index) for index in range(ray_count)]


def cast_rays(
    raycaster: Raycaster,
    directions: Sequence[Vector2],
    origin: Vector2,
    target_id: str,
    max_range: float,
    exclude: Optional[str] = None,
) -> List[float]:
    distances: List[float] = []
    for direction in directions:
        hit = raycaster.raycast(origin, direction, max_range, height=VISION_RAY_HEIGHT, exclude=exclude)
        if hit is not None and hit.obstacle_id == target_id:
            distances.append(hit.distance)
        else:
            distances.append(max_range)
    return distances


def visibility_score(distances: Sequence[float], max_range: float) -> float:
    if not distances:
        return 0.0
    visible = sum(1 for distance in distances if distance < max_range)
    return visible / len(distances)
