"""
Drawing surfaces owned by the viewer.

A page view is made of three layers, each held by explicit reference:
the rendered page bitmap, the transparent overlay surface the highlight
polygons are drawn on, and the text layer (positioned text spans).
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from .geometry import Point

Color = Tuple[int, int, int, int]

TRANSPARENT: Color = (0, 0, 0, 0)


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int
    scale: float = 1.0
    rotation: int = 0


class OverlaySurface:
    """Transparent RGBA layer with the small canvas-like API the overlay renderer needs."""

    def __init__(self, width: int, height: int, font: Optional[ImageFont.ImageFont] = None) -> None:
        self.image = Image.new("RGBA", (max(int(width), 1), max(int(height), 1)), TRANSPARENT)
        self._draw = ImageDraw.Draw(self.image)
        self.font = font or ImageFont.load_default(size=14)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def set_font(self, font: ImageFont.ImageFont) -> None:
        self.font = font

    def clear(self) -> None:
        self.image.paste(TRANSPARENT, (0, 0, self.width, self.height))

    def _composite(self, paint: Callable[[ImageDraw.ImageDraw], None]) -> None:
        """Paint on a blank layer and alpha-composite it, so translucent shapes accumulate."""
        layer = Image.new("RGBA", self.image.size, TRANSPARENT)
        paint(ImageDraw.Draw(layer))
        self.image.alpha_composite(layer)

    def polygon(self, points: Sequence[Point], fill: Color, outline: Color, width: int = 1) -> None:
        xy = [(p.x, p.y) for p in points]
        self._composite(lambda draw: draw.polygon(xy, fill=fill))
        self._composite(lambda draw: draw.line(xy + xy[:1], fill=outline, width=width))

    def measure_text(self, text: str) -> float:
        return self._draw.textlength(text, font=self.font)

    def fill_rect(self, x: float, y: float, width: float, height: float, color: Color) -> None:
        self._composite(lambda draw: draw.rectangle([(x, y), (x + width, y + height)], fill=color))

    def fill_text(self, text: str, x: float, baseline: float, color: Color) -> None:
        self._composite(lambda draw: draw.text((x, baseline), text, fill=color, font=self.font, anchor="ls"))

    def pixel(self, x: int, y: int) -> Color:
        return self.image.getpixel((x, y))  # type: ignore[return-value]


@dataclass
class ScrollPosition:
    """Scroll offset of the container the page view sits in."""

    left: float = 0.0
    top: float = 0.0
    smooth: bool = False

    def scroll_to(self, left: float, top: float, smooth: bool = True) -> None:
        self.left = left
        self.top = top
        self.smooth = smooth


@dataclass(frozen=True)
class TextSpan:
    text: str
    left: float
    top: float
    width: float
    height: float


@dataclass
class TextLayer:
    spans: List[TextSpan] = field(default_factory=list)

    def clear(self) -> None:
        self.spans.clear()

    @property
    def text(self) -> str:
        return " ".join(span.text for span in self.spans)


@dataclass
class PageView:
    page_number: int
    viewport: Viewport
    bitmap: Image.Image
    overlay: OverlaySurface
    text_layer: TextLayer

    def composite(self) -> Image.Image:
        """Page bitmap with the overlay drawn on top."""
        base = self.bitmap.convert("RGBA")
        if base.size != self.overlay.image.size:
            base = base.resize(self.overlay.image.size)
        return Image.alpha_composite(base, self.overlay.image)

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self.composite().save(buffer, format="PNG")
        return buffer.getvalue()
