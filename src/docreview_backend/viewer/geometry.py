"""
Coordinate mapping between normalized page space and a rendering surface.

Highlight polygons are stored in unrotated, normalized page space (both axes
in the 0-1 range). Drawing maps them onto a surface of ``width`` x ``height``
pixels that already shows the page rotated clockwise by one of the right
angles; cursor handling uses the exact inverse of the same mapping, so a point
drawn at a pixel and a cursor resting on that pixel agree.
"""

from __future__ import annotations

from typing import Callable, Dict, NamedTuple

RIGHT_ANGLES = (0, 90, 180, 270)


class Point(NamedTuple):
    x: float
    y: float


def normalize_rotation(degrees: int) -> int:
    """
    Bring any rotation into the [0, 360) range.

    Example:
        >>> normalize_rotation(-90)
        270
        >>> normalize_rotation(450)
        90
    """
    return ((int(degrees) % 360) + 360) % 360


_FORWARD: Dict[int, Callable[[float, float, float, float], Point]] = {
    0: lambda x, y, w, h: Point(x * w, y * h),
    90: lambda x, y, w, h: Point((1 - y) * w, x * h),
    180: lambda x, y, w, h: Point((1 - x) * w, (1 - y) * h),
    270: lambda x, y, w, h: Point(y * w, (1 - x) * h),
}

_INVERSE: Dict[int, Callable[[float, float, float, float], Point]] = {
    0: lambda px, py, w, h: Point(px / w, py / h),
    90: lambda px, py, w, h: Point(py / h, 1 - px / w),
    180: lambda px, py, w, h: Point(1 - px / w, 1 - py / h),
    270: lambda px, py, w, h: Point(1 - py / h, px / w),
}


def to_surface(point: Point, width: float, height: float, rotation: int = 0) -> Point:
    """
    Map a normalized page point to surface pixels.

    Out-of-range points are mapped as-is. Rotations that are not right angles
    use the unrotated mapping.
    """
    mapping = _FORWARD.get(normalize_rotation(rotation), _FORWARD[0])
    return mapping(point.x, point.y, width, height)


def from_surface(px: float, py: float, width: float, height: float, rotation: int = 0) -> Point:
    """
    Map surface pixels back to a normalized page point (inverse of ``to_surface``).

    Raises:
        ValueError: If the surface has no area
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Surface has no area: {width}x{height}")
    mapping = _INVERSE.get(normalize_rotation(rotation), _INVERSE[0])
    return mapping(px, py, width, height)
