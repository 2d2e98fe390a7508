"""Highlight projector — resolved citation → page + rectangle on the viewer.

Flow for one citation:
  1. Look up the stored spans on the citation's page whose offset range
     overlaps ``[start, end)``.
  2. No spans → a miss.  This happens legitimately when the citation's
     offsets were computed against an older extraction with different run
     boundaries.  A miss is reported as ``None`` and nothing is drawn; it
     is not an error.
  3. One or more spans → the union of all their boxes (a citation may
     cover several runs, so the first match is not enough).
  4. Tell the viewer to scroll to the page and draw the box.

Clicks:
  ``click()`` is the entry point for user interaction.  Each click
  supersedes the previous one: a lookup still in flight is cancelled, and
  a result that arrives for a superseded click is dropped so it can never
  overwrite the newer highlight.  The store lookup is the only suspension
  point.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from src.indexing.models import BBox, WordSpan
from src.indexing.store import SpanStore
from src.retrieval.models import Citation, Highlight

logger = logging.getLogger(__name__)


class ViewerSurface(Protocol):
    def scroll_to_page(self, page: int) -> None: ...

    def draw_highlight(self, page: int, bbox: BBox) -> None: ...


def union_bbox(spans: Iterable[WordSpan]) -> BBox | None:
    """Smallest box containing every span's box; None for no spans."""
    x0 = y0 = float("inf")
    x1 = y1 = float("-inf")
    found = False
    for span in spans:
        found = True
        x0 = min(x0, span.bbox.x)
        y0 = min(y0, span.bbox.y)
        x1 = max(x1, span.bbox.x1)
        y1 = max(y1, span.bbox.y1)
    if not found:
        return None
    return BBox(x0, y0, x1 - x0, y1 - y0)


class HighlightProjector:
    def __init__(self, store: SpanStore, viewer: ViewerSurface) -> None:
        self._store = store
        self._viewer = viewer
        self._generation = 0
        self._inflight: asyncio.Task[Highlight | None] | None = None

    async def project(self, citation: Citation) -> Highlight | None:
        """Compute the highlight for a citation without touching the viewer."""
        if not citation.is_clickable:
            return None
        assert citation.document_id is not None
        assert citation.page is not None and citation.start is not None and citation.end is not None

        spans = await self._store.find_covering(
            citation.document_id, citation.page, citation.start, citation.end
        )
        bbox = union_bbox(spans)
        if bbox is None:
            logger.debug(
                "no span covers %s page %d [%d, %d)",
                citation.document_id, citation.page, citation.start, citation.end,
            )
            return None
        return Highlight(
            document_id=citation.document_id,
            page=citation.page,
            bbox=tuple(bbox),
            span_count=len(spans),
        )

    async def click(self, citation: Citation) -> Highlight | None:
        """Handle a citation click; returns the highlight that was drawn, if any."""
        self._generation += 1
        generation = self._generation
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        task = asyncio.ensure_future(self.project(citation))
        self._inflight = task
        try:
            highlight = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                # Superseded by a newer click.
                return None
            raise
        except Exception:
            logger.warning(
                "highlight lookup failed for citation [%d]",
                citation.display_index, exc_info=True,
            )
            return None
        finally:
            if self._inflight is task:
                self._inflight = None

        if generation != self._generation or highlight is None:
            return None

        self._viewer.scroll_to_page(highlight.page)
        self._viewer.draw_highlight(highlight.page, BBox(*highlight.bbox))
        return highlight
