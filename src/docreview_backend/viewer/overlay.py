"""
Highlight overlay drawing.

The renderer paints vertices groups onto an ``OverlaySurface``. Group
coordinates stay in normalized, unrotated page space; rotation is applied per
vertex while drawing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from PIL import ImageFont

from ..models import VerticesGroup
from .geometry import Point, normalize_rotation, to_surface
from .surface import Color, OverlaySurface, ScrollPosition, Viewport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverlayStyle:
    stroke_color: Color = (0, 0, 255, 204)
    fill_color: Color = (0, 0, 255, 51)
    line_width: int = 1
    label_background: Color = (0, 0, 255, 255)
    label_color: Color = (255, 255, 255, 255)
    font_size: int = 14
    font_path: Optional[str] = None
    label_height: int = 16
    label_padding: int = 4
    label_offset: int = 10
    label_baseline_offset: int = 15

    def load_font(self) -> ImageFont.FreeTypeFont:
        if self.font_path:
            return ImageFont.truetype(self.font_path, self.font_size)
        return ImageFont.load_default(size=self.font_size)


class OverlayRenderer:
    def __init__(self, style: Optional[OverlayStyle] = None, scroll_margin: float = 50) -> None:
        self.style = style or OverlayStyle()
        self.scroll_margin = scroll_margin
        self._font = self.style.load_font()

    def draw(
        self,
        surface: Optional[OverlaySurface],
        viewport: Viewport,
        groups: Iterable[VerticesGroup],
        rotation: int = 0,
        scroll_into_view: bool = True,
        label: str = "",
        current_page: int = 1,
        scroller: Optional[ScrollPosition] = None,
    ) -> List[VerticesGroup]:
        """
        Clear the surface and draw every group shown on ``current_page``.

        When exactly one group is drawn and ``scroll_into_view`` is set, the
        scroller is moved so the group's first vertex is visible. A non-empty
        ``label`` is drawn above the first vertex of each drawn group.

        Returns:
            The groups that were drawn, in input order. Nothing is drawn when
            ``surface`` is None.
        """
        if surface is None:
            return []

        surface.clear()
        surface.set_font(self._font)
        angle = normalize_rotation(rotation)

        drawn: List[Tuple[VerticesGroup, List[Point]]] = []
        for group in groups:
            if not group.on_page(current_page) or not group.vertices:
                continue
            points = [to_surface(vertex, viewport.width, viewport.height, angle) for vertex in group.vertices]
            surface.polygon(points, fill=self.style.fill_color, outline=self.style.stroke_color, width=self.style.line_width)
            if label:
                self._draw_label(surface, label, points[0])
            drawn.append((group, points))

        if len(drawn) == 1 and scroll_into_view and scroller is not None:
            first = drawn[0][1][0]
            scroller.scroll_to(
                max(first.x - self.scroll_margin, 0),
                max(first.y - self.scroll_margin, 0),
                smooth=True,
            )

        logger.debug("Drew %d of the supplied vertices groups on page %d", len(drawn), current_page)
        return [group for group, _ in drawn]

    def _draw_label(self, surface: OverlaySurface, label: str, anchor: Point) -> None:
        style = self.style
        text_width = surface.measure_text(label)
        surface.fill_rect(
            anchor.x - text_width / 2 - style.label_padding,
            anchor.y - style.label_height - style.label_offset,
            text_width + style.label_padding * 2,
            style.label_height,
            style.label_background,
        )
        surface.fill_text(label, anchor.x - text_width / 2, anchor.y - style.label_baseline_offset, style.label_color)
