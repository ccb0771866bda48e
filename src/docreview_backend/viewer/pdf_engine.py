"""
PDF rendering capability backed by PyMuPDF.

Exposes the small surface the viewer relies on: load a document from bytes,
get a page, compute a viewport, render the page bitmap, extract its text and
lay that text out over the rendered page. MuPDF calls are blocking, so they
run in worker threads; one lock per document serializes them because a
MuPDF document must not be used from two threads at once.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import List

import fitz
from PIL import Image

from .geometry import Point, normalize_rotation, to_surface
from .surface import TextLayer, TextSpan, Viewport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextItem:
    """A word on the page, in normalized unrotated page space."""

    text: str
    x0: float
    y0: float
    x1: float
    y1: float


class PdfPage:
    def __init__(self, page: fitz.Page, number: int, lock: threading.Lock) -> None:
        self._page = page
        self._lock = lock
        self.number = number

    def get_viewport(self, scale: float = 1.0, rotation: int = 0) -> Viewport:
        angle = normalize_rotation(rotation)
        width = self._page.rect.width * scale
        height = self._page.rect.height * scale
        if angle in (90, 270):
            width, height = height, width
        return Viewport(width=max(int(round(width)), 1), height=max(int(round(height)), 1), scale=scale, rotation=angle)

    def _rasterize(self, viewport: Viewport) -> Image.Image:
        matrix = fitz.Matrix(viewport.scale, viewport.scale).prerotate(viewport.rotation)
        with self._lock:
            pixmap = self._page.get_pixmap(matrix=matrix, alpha=False)
        image = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
        if image.size != (viewport.width, viewport.height):
            image = image.resize((viewport.width, viewport.height))
        return image

    async def render(self, viewport: Viewport) -> Image.Image:
        return await asyncio.to_thread(self._rasterize, viewport)

    def _extract_words(self) -> List[TextItem]:
        with self._lock:
            rect = self._page.rect
            words = self._page.get_text("words")
        width, height = rect.width or 1, rect.height or 1
        return [
            TextItem(text=word[4], x0=word[0] / width, y0=word[1] / height, x1=word[2] / width, y1=word[3] / height)
            for word in words
        ]

    async def get_text_content(self) -> List[TextItem]:
        return await asyncio.to_thread(self._extract_words)


class PdfDocument:
    def __init__(self, document: fitz.Document) -> None:
        self._document = document
        self._lock = threading.Lock()

    @property
    def num_pages(self) -> int:
        return self._document.page_count

    async def get_page(self, number: int) -> PdfPage:
        """Return the 1-based page ``number``."""
        if not 1 <= number <= self.num_pages:
            raise IndexError(f"Page {number} out of range 1..{self.num_pages}")

        def _load() -> fitz.Page:
            with self._lock:
                return self._document.load_page(number - 1)

        return PdfPage(await asyncio.to_thread(_load), number, self._lock)

    def close(self) -> None:
        with self._lock:
            self._document.close()


class PyMuPdfEngine:
    async def load_document(self, data: bytes) -> PdfDocument:
        document = await asyncio.to_thread(fitz.open, stream=data, filetype="pdf")
        logger.debug("Opened PDF with %d pages", document.page_count)
        return PdfDocument(document)

    def render_text_layer(self, text_content: List[TextItem], container: TextLayer, viewport: Viewport) -> TextLayer:
        """Position every word over the rendered page, honoring the viewport rotation."""
        for item in text_content:
            corners = [
                to_surface(Point(item.x0, item.y0), viewport.width, viewport.height, viewport.rotation),
                to_surface(Point(item.x1, item.y1), viewport.width, viewport.height, viewport.rotation),
            ]
            left = min(corner.x for corner in corners)
            top = min(corner.y for corner in corners)
            container.spans.append(
                TextSpan(
                    text=item.text,
                    left=left,
                    top=top,
                    width=max(corner.x for corner in corners) - left,
                    height=max(corner.y for corner in corners) - top,
                )
            )
        return container
