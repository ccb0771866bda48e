from __future__ import annotations

from typing import Sequence

from .geometry import Point


def contains(point: Point, vertices: Sequence) -> bool:
    """Even-odd ray casting test; polygons with fewer than 3 vertices contain nothing."""
    n = len(vertices)
    if n < 3:
        return False

    px, py = point.x, point.y
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = vertices[i].x, vertices[i].y
        xj, yj = vertices[j].x, vertices[j].y
        if (yi > py) != (yj > py) and px < (xj - xi) * (py - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside
