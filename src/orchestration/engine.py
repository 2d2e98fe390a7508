"""CitationEngine — top-level entry point tying the components together.

Coordinates:

  1. Indexing: PDF → spans → span store.
  2. Rendering generated text: parse markers → resolve document refs
     against the documents currently in the store.
  3. Citation clicks: highlight projection + page rendering, one
     projector (and so one cancellation scope) per open document.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import NamedTuple

from psycopg import connect as sync_connect
from psycopg_pool import AsyncConnectionPool

from config import settings
from src.indexing.indexer import IndexReport, PdfDocument, index_batch
from src.indexing.schema import init_schema
from src.indexing.store import InMemorySpanStore, PostgresSpanStore, SpanStore
from src.retrieval.citations import parse_citations
from src.retrieval.models import Citation, DocumentRef, Highlight, SpanRef, Token
from src.retrieval.projector import HighlightProjector
from src.retrieval.resolver import resolve_citations
from src.viewer.renderer import PdfPageViewer

logger = logging.getLogger(__name__)


class _ViewerSession(NamedTuple):
    path: Path
    viewer: PdfPageViewer
    projector: HighlightProjector


class CitationEngine:
    """Owns the span store and the per-document viewer sessions.

    Owns:
      - Connection pool management (when backed by Postgres).
      - Viewer / projector sessions keyed by document id.

    Does NOT own:
      - Offset bookkeeping (``extractor.py``).
      - Marker grammars (``citations.py``).
      - Name matching (``resolver.py``).
    """

    def __init__(self, store: SpanStore | None = None) -> None:
        self._pool: AsyncConnectionPool | None = None
        self._store: SpanStore | None = store
        self._sessions: OrderedDict[str, _ViewerSession] = OrderedDict()

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Open the store.  Must be called before any other method."""
        if self._store is not None:
            return
        if not settings.database_url:
            logger.warning("DATABASE_URL is not set; using an in-memory span store")
            self._store = InMemorySpanStore()
            return

        # init_schema uses a sync Connection; it only runs at startup.
        with sync_connect(settings.database_url) as conn:
            init_schema(conn)

        self._pool = AsyncConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.span_store_pool_min_size,
            max_size=settings.span_store_pool_max_size,
            open=False,
            kwargs={"autocommit": True},
        )
        await self._pool.open()
        self._store = PostgresSpanStore(self._pool)

    async def stop(self) -> None:
        """Close the connection pool and drop viewer sessions."""
        self._sessions.clear()
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._store = None

    @property
    def store(self) -> SpanStore:
        if self._store is None:
            raise RuntimeError("CitationEngine.start() has not been called.")
        return self._store

    # ── Indexing ──────────────────────────────────────────────

    async def index_pdf(
        self,
        path: str | Path,
        *,
        document_id: str | None = None,
        display_name: str | None = None,
        force: bool = False,
    ) -> IndexReport:
        doc = await asyncio.to_thread(
            PdfDocument.from_path, path, document_id=document_id, display_name=display_name
        )
        # A re-indexed document may have new run boundaries; stale overlays go.
        self._sessions.pop(doc.document_id, None)
        return await index_batch(self.store, [doc], force=force)

    async def delete_document(self, document_id: str) -> bool:
        """Remove a document's index and close its viewer session."""
        self._sessions.pop(document_id, None)
        return await self.store.delete_document(document_id)

    async def documents_in_scope(self) -> list[DocumentRef]:
        return [
            DocumentRef(id=doc.id, display_name=doc.display_name)
            for doc in await self.store.list_documents()
        ]

    # ── Rendering generated text ──────────────────────────────

    async def render_citations(
        self, text: str, span_refs: list[SpanRef] | None = None
    ) -> list[Token]:
        """Parse markers in ``text`` and resolve their document references."""
        tokens = parse_citations(text, span_refs)
        return resolve_citations(tokens, await self.documents_in_scope())

    # ── Citation clicks ───────────────────────────────────────

    async def _session(self, document_id: str, pdf_path: str | Path) -> _ViewerSession:
        """Viewer + projector for a document, opened from ``pdf_path``.

        A session opened from a different file is replaced.  Sessions are
        kept in least-recently-used order and capped at
        ``VIEWER_MAX_SESSIONS``.
        """
        path = Path(pdf_path).resolve()
        session = self._sessions.get(document_id)
        if session is not None and session.path == path:
            self._sessions.move_to_end(document_id)
            return session

        pdf_bytes = await asyncio.to_thread(path.read_bytes)
        viewer = PdfPageViewer(document_id, pdf_bytes)
        session = _ViewerSession(path, viewer, HighlightProjector(self.store, viewer))
        self._sessions[document_id] = session
        self._sessions.move_to_end(document_id)
        while len(self._sessions) > max(1, settings.viewer_max_sessions):
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("closed viewer session for %s", evicted)
        return session

    async def highlight(
        self, citation: Citation, pdf_path: str | Path
    ) -> tuple[Highlight | None, bytes | None]:
        """Project a clicked citation and render the page it lands on.

        Returns ``(None, None)`` when the citation is not clickable or the
        projection misses.
        """
        if not citation.is_clickable:
            return None, None
        assert citation.document_id is not None
        session = await self._session(citation.document_id, pdf_path)
        highlight = await session.projector.click(citation)
        if highlight is None:
            return None, None
        png = await asyncio.to_thread(session.viewer.render)
        return highlight, png
