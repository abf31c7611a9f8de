from __future__ import annotations

import math

from pygame.math import Vector2

ZERO = Vector2()

_EPSILON_SQ = 1e-10


def _safe_normalize(vector: Vector2) -> Vector2:
    return _safe_normalize_xy(vector.x, vector.y)


def _safe_normalize_xy(x: float, y: float) -> Vector2:
    magnitude_sq = x * x + y * y
    if magnitude_sq < _EPSILON_SQ:
        return Vector2()
    inv = 1.0 / math.sqrt(magnitude_sq)
    return Vector2(x * inv, y * inv)


def _clamp_length(vector: Vector2, max_length: float) -> Vector2:
    if max_length <= 0:
        return Vector2()
    magnitude_sq = vector.length_squared()
    if magnitude_sq <= max_length * max_length:
        return Vector2(vector)
    if magnitude_sq == 0:
        return Vector2()
    return vector.normalize() * max_length


def _clamp_value(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


def _cross(a: Vector2, b: Vector2) -> float:
    return a.x * b.y - a.y * b.x


def _signed_angle(from_vec: Vector2, to_vec: Vector2) -> float:
    """Counter-clockwise angle in radians from ``from_vec`` to ``to_vec``."""
    return math.atan2(_cross(from_vec, to_vec), from_vec.dot(to_vec))


def _unsigned_angle(a: Vector2, b: Vector2) -> float:
    # Zero vectors normalize to zero, which yields pi/2.
    cosine = _safe_normalize(a).dot(_safe_normalize(b))
    return math.acos(_clamp_value(cosine, -1.0, 1.0))


def _project(vector: Vector2, onto: Vector2) -> Vector2:
    onto_sq = onto.length_squared()
    if onto_sq < _EPSILON_SQ:
        return Vector2()
    return onto * (vector.dot(onto) / onto_sq)


def _rotate_clockwise(vector: Vector2, radians: float) -> Vector2:
    return vector.rotate_rad(-radians)


def _right_normal(direction: Vector2) -> Vector2:
    return Vector2(direction.y, -direction.x)


def _closest_point_on_segment(point: Vector2, start: Vector2, end: Vector2) -> Vector2:
    segment = end - start
    length_sq = segment.length_squared()
    if length_sq < _EPSILON_SQ:
        return Vector2(start)
    t = _clamp_value((point - start).dot(segment) / length_sq, 0.0, 1.0)
    return start + segment * t


def _distance_to_segment(point: Vector2, start: Vector2, end: Vector2) -> float:
    return point.distance_to(_closest_point_on_segment(point, start, end))


def _ray_segment_distance(
    origin: Vector2, direction: Vector2, start: Vector2, end: Vector2, tolerance: float = 1e-7
) -> float | None:
    """Distance along a unit ray to a segment, or None when they do not meet."""
    segment = end - start
    denom = _cross(direction, segment)
    if abs(denom) < 1e-12:
        return None
    offset = start - origin
    t = _cross(offset, segment) / denom
    u = _cross(offset, direction) / denom
    if t < -tolerance or u < -tolerance or u > 1.0 + tolerance:
        return None
    return max(0.0, t)


def _ray_circle_distance(origin: Vector2, direction: Vector2, center: Vector2, radius: float) -> float | None:
    offset = origin - center
    b = offset.dot(direction)
    c = offset.length_squared() - radius * radius
    if c <= 0.0:
        # Rays starting inside a body do not report it.
        return None
    discriminant = b * b - c
    if discriminant < 0.0:
        return None
    t = -b - math.sqrt(discriminant)
    if t < 0.0:
        return None
    return t


def _sigmoid(value: float) -> float:
    if value >= 0.0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)
