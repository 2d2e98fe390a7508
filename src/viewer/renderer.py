"""Page rendering with a highlight overlay (PyMuPDF).

``PdfPageViewer`` implements the projector's ``ViewerSurface``: it keeps
the page the user was scrolled to and the overlay box, and rasterises that
page on demand with the box drawn as a translucent rectangle.

Coordinates: stored span boxes come from ``page.get_text("dict")`` and are
in the same top-left-origin point space that ``Page.draw_rect`` uses, so a
box is drawn exactly where its text was read.  The only transform applied
is the zoom matrix, which PyMuPDF applies to the whole page.
"""

from __future__ import annotations

import logging

import fitz  # PyMuPDF

from config import settings
from src.indexing.models import BBox
from src.ingestion.pdf_text import open_pdf

logger = logging.getLogger(__name__)


def render_page_png(
    pdf_bytes: bytes,
    page_number: int,
    highlight: BBox | None = None,
    *,
    zoom: float | None = None,
) -> bytes:
    """Render one page (1-based) to PNG, optionally with an overlay box."""
    doc = open_pdf(pdf_bytes)
    try:
        if page_number < 1 or page_number > doc.page_count:
            raise ValueError(
                f"Page {page_number} does not exist in document ({doc.page_count} pages)"
            )
        page = doc.load_page(page_number - 1)
        if highlight is not None:
            # Drawing edits the in-memory copy only; the caller's bytes are untouched.
            page.draw_rect(
                fitz.Rect(highlight.x, highlight.y, highlight.x1, highlight.y1),
                color=None,
                fill=settings.highlight_color,
                fill_opacity=settings.highlight_opacity,
                overlay=True,
            )
        factor = zoom if zoom is not None else settings.render_zoom
        pix = page.get_pixmap(matrix=fitz.Matrix(factor, factor))
        return pix.tobytes("png")
    finally:
        doc.close()


class PdfPageViewer:
    """Viewer state for one open PDF."""

    def __init__(self, document_id: str, pdf_bytes: bytes) -> None:
        self.document_id = document_id
        self._pdf_bytes = pdf_bytes
        self.current_page = 1
        self.highlight: BBox | None = None
        self.highlight_page: int | None = None

    def scroll_to_page(self, page: int) -> None:
        self.current_page = page

    def draw_highlight(self, page: int, bbox: BBox) -> None:
        logger.debug("highlight %s page %d at %s", self.document_id, page, tuple(bbox))
        self.highlight_page = page
        self.highlight = bbox

    def clear_highlight(self) -> None:
        self.highlight = None
        self.highlight_page = None

    def render(self, *, zoom: float | None = None) -> bytes:
        """PNG of the current page, with the overlay when it belongs to this page."""
        overlay = self.highlight if self.highlight_page == self.current_page else None
        return render_page_png(self._pdf_bytes, self.current_page, overlay, zoom=zoom)
