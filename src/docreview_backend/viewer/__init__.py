"""
Headless PDF viewer core.

    - geometry: normalized page space <-> rotated surface pixels
    - polygon: point-in-polygon hit test
    - surface: page bitmap, overlay surface and text layer handles
    - overlay: highlight polygon and label drawing
    - pdf_engine: PyMuPDF rendering capability
    - fetch: document byte fetching
    - controller: viewer state machine and render orchestration
"""

from .controller import Bounds, LoadFailure, Tool, ViewerController, ViewerSettings
from .geometry import Point, from_surface, normalize_rotation, to_surface
from .overlay import OverlayRenderer, OverlayStyle
from .polygon import contains
from .surface import OverlaySurface, PageView, ScrollPosition, TextLayer, Viewport

__all__ = [
    "Bounds",
    "LoadFailure",
    "OverlayRenderer",
    "OverlayStyle",
    "OverlaySurface",
    "PageView",
    "Point",
    "ScrollPosition",
    "TextLayer",
    "Tool",
    "ViewerController",
    "ViewerSettings",
    "Viewport",
    "contains",
    "from_surface",
    "normalize_rotation",
    "to_surface",
]
