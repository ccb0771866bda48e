"""
Viewer state and page render orchestration.

The controller owns everything a single viewer instance shows: the loaded
document, page number, zoom scale, rotation, active tool, loading/error state
and the current ``PageView`` (bitmap, overlay surface and text layer). It runs
on one asyncio event loop.

Rendering:
    Every change to page, scale or rotation schedules a full render. Each
    render takes a sequence number when it starts; a render that finishes
    after a newer one has started is dropped, so only the latest request
    becomes visible.

Annotations:
    ``set_vertices_groups`` switches to the page of the first group and
    redraws the overlay after a short debounce, without re-rendering the page
    bitmap. The debounce is a single ``asyncio.TimerHandle``; a newer update
    cancels the pending one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Set, Tuple

from PIL import Image

from ..models import VerticesGroup
from .fetch import FetchBytes, get_document_bytes
from .geometry import from_surface, normalize_rotation
from .overlay import OverlayRenderer
from .pdf_engine import PyMuPdfEngine
from .polygon import contains
from .surface import OverlaySurface, PageView, ScrollPosition, TextLayer

logger = logging.getLogger(__name__)


class LoadFailure(Exception):
    """The document could not be fetched or parsed."""


class Tool(str, Enum):
    SELECTION = "selection"
    HANDTOOL = "handtool"


_SHORTCUTS = {"h": Tool.HANDTOOL, "s": Tool.SELECTION}


@dataclass(frozen=True)
class ViewerSettings:
    initial_scale: float = 1.5
    min_scale: float = 0.5
    max_scale: float = 5.0
    zoom_step: float = 1.2
    debounce_ms: float = 10
    scroll_margin: float = 50
    thumbnail_scale: float = 0.17
    load_error_message: str = "Cannot load pdf file!"


@dataclass(frozen=True)
class Bounds:
    """Position and size of the overlay surface in client (pointer event) coordinates."""

    left: float
    top: float
    width: float
    height: float


class ViewerController:
    def __init__(
        self,
        document_url: str = "",
        vertices_groups: Iterable[VerticesGroup] = (),
        show_pagination_control: bool = False,
        initial_vertices: Iterable[VerticesGroup] = (),
        *,
        fetch: Optional[FetchBytes] = None,
        engine: Any = None,
        renderer: Optional[OverlayRenderer] = None,
        settings: Optional[ViewerSettings] = None,
        scroller: Optional[ScrollPosition] = None,
    ) -> None:
        self.document_url = document_url
        self.settings = settings or ViewerSettings()
        self.renderer = renderer or OverlayRenderer(scroll_margin=self.settings.scroll_margin)
        self.scroller = scroller or ScrollPosition()
        self._fetch = fetch or get_document_bytes
        self._engine = engine or PyMuPdfEngine()

        self.document: Any = None
        self.num_pages = 0
        self.current_page = 1
        self.scale = self.settings.initial_scale
        self.rotation = 0
        self.active_tool = Tool.SELECTION
        self.loading = False
        self.error: Optional[str] = None
        self.show_pagination = True
        self.show_pagination_control = show_pagination_control

        self.vertices_groups: Tuple[VerticesGroup, ...] = tuple(vertices_groups)
        self.hover_vertices: Tuple[VerticesGroup, ...] = tuple(initial_vertices)
        self.page_view: Optional[PageView] = None
        self.last_drawn: List[VerticesGroup] = []

        self._render_seq = 0
        self._render_tasks: Set[asyncio.Task] = set()
        self._debounce: Optional[asyncio.TimerHandle] = None
        # Set when a debounced redraw was handed over to the next committed render
        self._pending_scroll = False

        if self.vertices_groups:
            self.current_page = self._target_page(self.vertices_groups)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _open_document(self) -> Any:
        try:
            data = await self._fetch(self.document_url)
            return await self._engine.load_document(data)
        except Exception as exc:  # noqa: BLE001
            raise LoadFailure(f"Cannot load {self.document_url}: {exc}") from exc

    async def load(self) -> bool:
        """
        Fetch and open the document, then render the current page.

        Returns:
            True on success. On failure ``error`` holds the message shown to
            the user and the previous document, if any, is kept.
        """
        if not self.document_url:
            return False

        self.loading = True
        try:
            document = await self._open_document()
        except LoadFailure as exc:
            logger.warning("%s", exc)
            self.error = self.settings.load_error_message
            return False
        finally:
            self.loading = False

        self._close_document()
        self.document = document
        self.num_pages = document.num_pages
        self.current_page = self._clamp_page(self.current_page)
        logger.info("Loaded %s (%d pages)", self.document_url, self.num_pages)
        await self.render()
        return True

    async def reload(self) -> bool:
        self.error = None
        return await self.load()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def render(self) -> Optional[PageView]:
        """
        Render bitmap, text layer and overlay for the current state.

        Returns:
            The new page view, or None when no document is loaded or a newer
            render started while this one was in flight.
        """
        if self.document is None:
            return None

        self._render_seq += 1
        seq = self._render_seq
        page_number, scale, rotation = self.current_page, self.scale, self.rotation

        page = await self.document.get_page(page_number)
        viewport = page.get_viewport(scale=scale, rotation=rotation)
        bitmap = await page.render(viewport)
        text_content = await page.get_text_content()

        if seq != self._render_seq:
            logger.debug("Dropping stale render %d of page %d", seq, page_number)
            return None

        text_layer = self._engine.render_text_layer(text_content, TextLayer(), viewport)
        view = PageView(
            page_number=page_number,
            viewport=viewport,
            bitmap=bitmap,
            overlay=OverlaySurface(viewport.width, viewport.height),
            text_layer=text_layer,
        )
        self.page_view = view
        scroll, self._pending_scroll = self._pending_scroll, False
        self.last_drawn = self.renderer.draw(
            view.overlay, viewport, self.vertices_groups, viewport.rotation, scroll, "", page_number, self.scroller
        )
        return view

    def _request_render(self) -> None:
        if self.document is None:
            return
        task = asyncio.get_running_loop().create_task(self.render())
        self._render_tasks.add(task)
        task.add_done_callback(self._render_finished)

    def _render_finished(self, task: asyncio.Task) -> None:
        self._render_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Page render failed", exc_info=task.exception())

    async def thumbnail(self, page_number: int) -> Image.Image:
        """
        Raises:
            RuntimeError: If no document is loaded
        """
        if self.document is None:
            raise RuntimeError("No document loaded")
        page = await self.document.get_page(page_number)
        viewport = page.get_viewport(scale=self.settings.thumbnail_scale)
        return await page.render(viewport)

    async def idle(self) -> None:
        """Wait until scheduled renders and the pending overlay redraw have run."""
        while self._render_tasks or self._debounce is not None:
            if self._render_tasks:
                await asyncio.gather(*list(self._render_tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self.settings.debounce_ms / 1000)

    # ------------------------------------------------------------------
    # Zoom, rotation, pages, tools
    # ------------------------------------------------------------------

    def zoom_in(self) -> float:
        return self._set_scale(min(self.scale * self.settings.zoom_step, self.settings.max_scale))

    def zoom_out(self) -> float:
        return self._set_scale(max(self.scale / self.settings.zoom_step, self.settings.min_scale))

    def _set_scale(self, scale: float) -> float:
        if scale != self.scale:
            self.scale = scale
            self._request_render()
        return self.scale

    def rotate_left(self) -> int:
        return self._set_rotation(self.rotation - 90)

    def rotate_right(self) -> int:
        return self._set_rotation(self.rotation + 90)

    def _set_rotation(self, rotation: int) -> int:
        self.rotation = normalize_rotation(rotation)
        self._request_render()
        return self.rotation

    def _clamp_page(self, page: int) -> int:
        # Before a document is loaded only the lower bound is known.
        if self.num_pages:
            page = min(page, self.num_pages)
        return max(page, 1)

    def go_to_page(self, page: int) -> int:
        page = self._clamp_page(page)
        if page != self.current_page:
            self.current_page = page
            self._request_render()
        return self.current_page

    def next_page(self) -> int:
        return self.go_to_page(self.current_page + 1)

    def prev_page(self) -> int:
        return self.go_to_page(self.current_page - 1)

    def set_tool(self, tool: Tool | str) -> Tool:
        self.active_tool = Tool(tool)
        return self.active_tool

    def handle_key(self, key: str, ctrl: bool = False) -> bool:
        """Ctrl+H selects the hand tool, Ctrl+S the selection tool."""
        tool = _SHORTCUTS.get(key.lower()) if ctrl else None
        if tool is None:
            return False
        self.set_tool(tool)
        return True

    def toggle_pagination(self) -> bool:
        self.show_pagination = not self.show_pagination
        return self.show_pagination

    def toggle_pagination_control(self) -> bool:
        self.show_pagination_control = not self.show_pagination_control
        return self.show_pagination_control

    # ------------------------------------------------------------------
    # Annotations and pointer
    # ------------------------------------------------------------------

    def _target_page(self, groups: Tuple[VerticesGroup, ...]) -> int:
        if not groups:
            return 1
        first = groups[0].page
        return self.current_page if first == "all" else int(first) + 1

    def set_vertices_groups(self, groups: Iterable[VerticesGroup]) -> int:
        """
        Replace the highlighted groups and show the page of the first one.

        Must be called from the event loop. Returns the page switched to.
        """
        self.vertices_groups = tuple(groups)
        page = self.go_to_page(self._target_page(self.vertices_groups))
        logger.debug("Drawing %d vertices groups on page %d", len(self.vertices_groups), page)

        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = asyncio.get_running_loop().call_later(
            self.settings.debounce_ms / 1000, self._flush_overlay, page
        )
        return page

    def _flush_overlay(self, page: int) -> None:
        self._debounce = None
        view = self.page_view
        if view is None or view.page_number != page or self._render_tasks:
            # The page shown is about to change; the next committed render draws and scrolls.
            self._pending_scroll = True
            return
        self.update_overlay(self.vertices_groups, scroll_into_view=True)

    def update_overlay(
        self,
        groups: Iterable[VerticesGroup],
        scroll_into_view: bool = True,
        page: Optional[int] = None,
        label: str = "",
    ) -> List[VerticesGroup]:
        """
        Redraw the overlay only; the page bitmap is left as is.

        ``page`` defaults to the page currently shown.
        """
        view = self.page_view
        if view is None:
            return []
        self.last_drawn = self.renderer.draw(
            view.overlay,
            view.viewport,
            groups,
            view.viewport.rotation,
            scroll_into_view,
            label,
            view.page_number if page is None else page,
            self.scroller,
        )
        return self.last_drawn

    def set_hover_vertices(self, groups: Iterable[VerticesGroup]) -> None:
        self.hover_vertices = tuple(groups)

    def handle_pointer_move(self, client_x: float, client_y: float, bounds: Optional[Bounds] = None) -> List[VerticesGroup]:
        """
        Highlight the hover groups under the pointer.

        ``bounds`` defaults to the overlay surface placed at the client origin.
        Returns the groups containing the pointer; they are drawn labelled with
        the first match's key.
        """
        view = self.page_view
        if not self.hover_vertices or view is None:
            return []

        bounds = bounds or Bounds(0, 0, view.overlay.width, view.overlay.height)
        if bounds.width <= 0 or bounds.height <= 0:
            return []

        rotation = view.viewport.rotation
        point = from_surface(client_x - bounds.left, client_y - bounds.top, bounds.width, bounds.height, rotation)
        hot = [group for group in self.hover_vertices if contains(point, group.vertices)]
        if hot:
            self.last_drawn = self.renderer.draw(
                view.overlay, view.viewport, hot, rotation, False, hot[0].key, view.page_number, self.scroller
            )
        return hot

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _close_document(self) -> None:
        if self.document is not None and hasattr(self.document, "close"):
            self.document.close()
        self.document = None

    def close(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        for task in list(self._render_tasks):
            task.cancel()
        self._close_document()
        self.page_view = None
