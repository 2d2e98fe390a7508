"""Span store — persisted word-span index keyed by document.

Two implementations share the ``SpanStore`` protocol:

  ``PostgresSpanStore`` — psycopg 3 async over an ``AsyncConnectionPool``.
      Each ``save`` runs in one transaction: upsert the document row,
      delete any previous span set, bulk-insert the new one.  Readers
      therefore see either the old index or the new one, never a mix.
  ``InMemorySpanStore`` — process-local dictionaries.  Used for offline
      runs and unit tests; same ordering and overlap semantics.

Write-time invariant (both stores):
  ``validate_spans`` rejects a span set whose offsets are not monotonic
  per page, that overlap, whose ranges disagree with their text length,
  or that belong to another document.  This is the check that stops an
  extractor bug from silently corrupting every later citation lookup.
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from src.indexing.models import BBox, IndexedDocument, WordSpan

logger = logging.getLogger(__name__)


class SpanOrderError(ValueError):
    """A span set violates the per-page ordering / offset invariant."""


def validate_spans(document_id: str, spans: Sequence[WordSpan]) -> None:
    """Raise ``SpanOrderError`` unless ``spans`` is a well-formed index.

    Spans are checked in the order given (the order the extractor produced
    them).  Pages may appear in any order relative to each other, but within
    a page offsets must be non-decreasing and non-overlapping.  Gaps between
    spans are allowed here; the projector tolerates them.
    """
    last_end: dict[int, int] = {}
    for position, span in enumerate(spans):
        if span.document_id != document_id:
            raise SpanOrderError(
                f"span #{position} belongs to {span.document_id!r}, expected {document_id!r}"
            )
        if span.page_number < 1:
            raise SpanOrderError(f"span #{position} has page_number {span.page_number}")
        if span.start_offset < 0 or span.end_offset - span.start_offset != len(span.text):
            raise SpanOrderError(
                f"span #{position} on page {span.page_number} covers "
                f"[{span.start_offset}, {span.end_offset}) but its text has "
                f"length {len(span.text)}"
            )
        previous_end = last_end.get(span.page_number, 0)
        if span.start_offset < previous_end:
            raise SpanOrderError(
                f"span #{position} on page {span.page_number} starts at "
                f"{span.start_offset}, before the previous span ends ({previous_end})"
            )
        last_end[span.page_number] = span.end_offset


class SpanStore(Protocol):
    async def save(
        self,
        document_id: str,
        spans: Sequence[WordSpan],
        *,
        display_name: str | None = None,
        content_hash: str = "",
        page_count: int | None = None,
    ) -> None: ...

    async def query(self, document_id: str) -> list[WordSpan]: ...

    async def find_covering(
        self, document_id: str, page: int, start: int, end: int
    ) -> list[WordSpan]: ...

    async def get_document(self, document_id: str) -> IndexedDocument | None: ...

    async def list_documents(self) -> list[IndexedDocument]: ...

    async def delete_document(self, document_id: str) -> bool: ...


def _page_count(spans: Sequence[WordSpan], page_count: int | None) -> int:
    if page_count is not None:
        return page_count
    return max((span.page_number for span in spans), default=0)


# ── In-memory ─────────────────────────────────────────────────


class InMemorySpanStore:
    """Process-local span store with the same semantics as Postgres."""

    def __init__(self) -> None:
        self._documents: dict[str, IndexedDocument] = {}
        # (document_id, page) → spans sorted by start_offset
        self._pages: dict[str, dict[int, list[WordSpan]]] = {}

    async def save(
        self,
        document_id: str,
        spans: Sequence[WordSpan],
        *,
        display_name: str | None = None,
        content_hash: str = "",
        page_count: int | None = None,
    ) -> None:
        validate_spans(document_id, spans)

        pages: dict[int, list[WordSpan]] = defaultdict(list)
        for span in spans:
            pages[span.page_number].append(span)
        for page_spans in pages.values():
            # Stable sort keeps zero-length runs ahead of the run they abut.
            page_spans.sort(key=lambda s: s.start_offset)

        # Swap both maps in one step so readers never see half an index.
        self._pages[document_id] = dict(pages)
        self._documents[document_id] = IndexedDocument(
            id=document_id,
            display_name=display_name or document_id,
            content_hash=content_hash,
            page_count=_page_count(spans, page_count),
            span_count=len(spans),
            indexed_at=datetime.now(timezone.utc),
        )

    async def query(self, document_id: str) -> list[WordSpan]:
        pages = self._pages.get(document_id, {})
        return [span for page in sorted(pages) for span in pages[page]]

    async def find_covering(
        self, document_id: str, page: int, start: int, end: int
    ) -> list[WordSpan]:
        page_spans = self._pages.get(document_id, {}).get(page, [])
        if not page_spans or end <= start:
            return []
        # End offsets are non-decreasing under the write invariant, so the
        # first candidate is the first span ending after ``start``.
        ends = [span.end_offset for span in page_spans]
        index = bisect.bisect_right(ends, start)
        covering: list[WordSpan] = []
        for span in page_spans[index:]:
            if span.start_offset >= end:
                break
            # Zero-length runs carry no text to highlight.
            if span.end_offset > start and span.end_offset > span.start_offset:
                covering.append(span)
        return covering

    async def get_document(self, document_id: str) -> IndexedDocument | None:
        return self._documents.get(document_id)

    async def list_documents(self) -> list[IndexedDocument]:
        return sorted(self._documents.values(), key=lambda d: d.display_name)

    async def delete_document(self, document_id: str) -> bool:
        self._pages.pop(document_id, None)
        return self._documents.pop(document_id, None) is not None


# ── Postgres ──────────────────────────────────────────────────


def _row_to_span(row: dict[str, Any]) -> WordSpan:
    return WordSpan(
        document_id=row["document_id"],
        page_number=int(row["page_number"]),
        text=row["text"],
        bbox=BBox(float(row["x"]), float(row["y"]), float(row["width"]), float(row["height"])),
        start_offset=int(row["start_offset"]),
        end_offset=int(row["end_offset"]),
    )


def _row_to_document(row: dict[str, Any]) -> IndexedDocument:
    return IndexedDocument(
        id=row["id"],
        display_name=row["display_name"],
        content_hash=row["content_hash"],
        page_count=int(row["page_count"]),
        span_count=int(row.get("span_count") or 0),
        indexed_at=row["indexed_at"],
    )


async def _upsert_document(conn: AsyncConnection, payload: dict[str, object]) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO documents (id, display_name, content_hash, page_count, indexed_at)
            VALUES (%(id)s, %(display_name)s, %(content_hash)s, %(page_count)s, NOW())
            ON CONFLICT (id) DO UPDATE SET
                display_name = EXCLUDED.display_name,
                content_hash = EXCLUDED.content_hash,
                page_count = EXCLUDED.page_count,
                indexed_at = EXCLUDED.indexed_at
            """,
            payload,
        )


async def _insert_spans(conn: AsyncConnection, spans: Sequence[WordSpan]) -> None:
    """Bulk-insert span rows using executemany (one round-trip for all rows)."""
    if not spans:
        return
    params_list = [
        {
            "document_id": span.document_id,
            "page_number": span.page_number,
            "start_offset": span.start_offset,
            "end_offset": span.end_offset,
            "text": span.text,
            "x": span.bbox.x,
            "y": span.bbox.y,
            "width": span.bbox.width,
            "height": span.bbox.height,
        }
        for span in spans
    ]
    async with conn.cursor() as cur:
        await cur.executemany(
            """
            INSERT INTO word_spans (
                document_id, page_number, start_offset, end_offset, text,
                x, y, width, height
            )
            VALUES (
                %(document_id)s, %(page_number)s, %(start_offset)s, %(end_offset)s,
                %(text)s, %(x)s, %(y)s, %(width)s, %(height)s
            )
            """,
            params_list,
        )


class PostgresSpanStore:
    """Span store backed by the ``documents`` / ``word_spans`` tables.

    The pool is owned by the caller (see ``CitationEngine``); connections
    must be opened with ``autocommit=True`` so ``conn.transaction()``
    issues its own BEGIN/COMMIT.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def save(
        self,
        document_id: str,
        spans: Sequence[WordSpan],
        *,
        display_name: str | None = None,
        content_hash: str = "",
        page_count: int | None = None,
    ) -> None:
        validate_spans(document_id, spans)
        payload = {
            "id": document_id,
            "display_name": display_name or document_id,
            "content_hash": content_hash,
            "page_count": _page_count(spans, page_count),
        }
        async with self._pool.connection() as conn:
            async with conn.transaction():
                await _upsert_document(conn, payload)
                async with conn.cursor() as cur:
                    await cur.execute(
                        "DELETE FROM word_spans WHERE document_id = %s", (document_id,)
                    )
                await _insert_spans(conn, spans)
        logger.info("saved %d spans for %s", len(spans), document_id)

    async def query(self, document_id: str) -> list[WordSpan]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT document_id, page_number, start_offset, end_offset, text,
                           x, y, width, height
                    FROM word_spans
                    WHERE document_id = %s
                    ORDER BY page_number, start_offset, end_offset
                    """,
                    (document_id,),
                )
                rows = await cur.fetchall()
        return [_row_to_span(row) for row in rows]

    async def find_covering(
        self, document_id: str, page: int, start: int, end: int
    ) -> list[WordSpan]:
        if end <= start:
            return []
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT document_id, page_number, start_offset, end_offset, text,
                           x, y, width, height
                    FROM word_spans
                    WHERE document_id = %(document_id)s
                      AND page_number = %(page)s
                      AND start_offset < %(end)s
                      AND end_offset > %(start)s
                      AND end_offset > start_offset
                    ORDER BY start_offset, end_offset
                    """,
                    {"document_id": document_id, "page": page, "start": start, "end": end},
                )
                rows = await cur.fetchall()
        return [_row_to_span(row) for row in rows]

    async def get_document(self, document_id: str) -> IndexedDocument | None:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT d.id, d.display_name, d.content_hash, d.page_count, d.indexed_at,
                           (SELECT COUNT(*) FROM word_spans s WHERE s.document_id = d.id)
                               AS span_count
                    FROM documents d
                    WHERE d.id = %s
                    """,
                    (document_id,),
                )
                row = await cur.fetchone()
        return _row_to_document(row) if row else None

    async def list_documents(self) -> list[IndexedDocument]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT d.id, d.display_name, d.content_hash, d.page_count, d.indexed_at,
                           COUNT(s.document_id) AS span_count
                    FROM documents d
                    LEFT JOIN word_spans s ON s.document_id = d.id
                    GROUP BY d.id
                    ORDER BY d.display_name
                    """
                )
                rows = await cur.fetchall()
        return [_row_to_document(row) for row in rows]

    async def delete_document(self, document_id: str) -> bool:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                # word_spans rows go with it (ON DELETE CASCADE).
                await cur.execute("DELETE FROM documents WHERE id = %s", (document_id,))
                return cur.rowcount > 0
