from __future__ import annotations

# ────────────────────────────────────────────────────────────────
# indexer.py — Entry point for the indexing layer
#
# Public interface:
#   index_document(store, doc)  — index a single PdfDocument
#   index_batch(store, docs)    — index multiple documents in one call
#
# Both are async coroutines.  Callers must await them.
#
# Pipeline phases (index_batch):
#   Phase 1 — Dedup:
#       For each document, look up the stored content_hash.  If it
#       matches the incoming bytes, the document is already indexed
#       and is skipped (no-op).
#
#   Phase 2 — Extraction (parallel):
#       Remaining documents go through extract_batch(), which runs
#       each one in a worker process off the event loop.  A document
#       that fails extraction is reported and never reaches the store;
#       the others continue.
#
#   Phase 3 — Store writes:
#       Each extracted document is saved with one store.save() call,
#       which is atomic per document (one transaction in Postgres).
#
# Failure handling:
#   Extraction failures are terminal for that document and are not
#   retried.  The document is left without a span index, so citations
#   against it later degrade to "unresolved" rather than pointing at a
#   partial index.  An index stored for different (older) bytes of the
#   same document id is deleted; it no longer matches the file.  Store errors (connection loss, constraint
#   violation) propagate.
# ────────────────────────────────────────────────────────────────

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from src.indexing.store import SpanStore
from src.ingestion.extractor import extract_batch

logger = logging.getLogger(__name__)


@dataclass
class PdfDocument:
    document_id: str
    content: bytes
    display_name: str | None = None

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    @classmethod
    def from_path(
        cls, path: str | Path, document_id: str | None = None, display_name: str | None = None
    ) -> PdfDocument:
        file_path = Path(path)
        return cls(
            document_id=document_id or file_path.stem,
            content=file_path.read_bytes(),
            display_name=display_name or file_path.name,
        )


@dataclass
class IndexReport:
    indexed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    span_counts: dict[str, int] = field(default_factory=dict)
    elapsed_ms: float = 0.0


async def index_document(store: SpanStore, doc: PdfDocument) -> IndexReport:
    """Index a single PdfDocument."""
    return await index_batch(store, [doc])


async def index_batch(
    store: SpanStore, docs: list[PdfDocument], *, force: bool = False
) -> IndexReport:
    """Extract and store a batch of documents.

    ``force`` re-indexes documents whose content hash is unchanged.
    """
    report = IndexReport()
    if not docs:
        return report
    started = time.perf_counter()

    # ── Phase 1: Dedup ────────────────────────────────────────
    staged: list[PdfDocument] = []
    # document_id -> content hash of the index already stored for it
    previous: dict[str, str] = {}
    for doc in docs:
        existing = await store.get_document(doc.document_id)
        if existing is not None:
            previous[doc.document_id] = existing.content_hash
        if not force and existing is not None and existing.content_hash == doc.content_hash:
            logger.info("skipping %s: content unchanged", doc.document_id)
            report.skipped.append(doc.document_id)
            continue
        staged.append(doc)

    if not staged:
        report.elapsed_ms = (time.perf_counter() - started) * 1000
        return report

    # ── Phase 2: Extraction (worker processes, off the loop) ──
    results = await asyncio.to_thread(
        extract_batch, [(doc.content, doc.document_id) for doc in staged]
    )

    # ── Phase 3: Store writes ─────────────────────────────────
    for doc, result in zip(staged, results):
        if result is None:
            report.failed.append(doc.document_id)
            stale = previous.get(doc.document_id)
            if stale is not None and stale != doc.content_hash:
                # The old offsets describe different bytes; drop them so
                # citations degrade to unresolved instead of mis-highlighting.
                await store.delete_document(doc.document_id)
                logger.warning(
                    "dropped stale index for %s after failed re-extraction", doc.document_id
                )
            continue
        await store.save(
            doc.document_id,
            result.spans,
            display_name=doc.display_name,
            content_hash=result.content_hash,
            page_count=result.page_count,
        )
        report.indexed.append(doc.document_id)
        report.span_counts[doc.document_id] = len(result.spans)

    report.elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "index_batch: indexed=%d skipped=%d failed=%d in %.0fms",
        len(report.indexed), len(report.skipped), len(report.failed), report.elapsed_ms,
    )
    return report
