from __future__ import annotations

# ────────────────────────────────────────────────────────────────
# extractor.py — PDF bytes → word-level spans with page offsets
#
# Public interface:
#   extract_word_spans(pdf_bytes, document_id) — one document
#   extract_batch(items)                       — many documents
#   spans_from_runs(document_id, page, runs)   — offset bookkeeping
#   page_text(spans)                           — rebuild page text
#
# Offset model:
#   For every page, the page text is the plain concatenation of the
#   run texts in the order the PDF primitive yields them, with no
#   separators.  Each span records the half-open range its run
#   occupies in that string.  Nothing is normalised (case, spacing,
#   diacritics) before offsets are computed; a consumer can always
#   recompute them by concatenation alone.
#
# Failure handling:
#   Extraction is all-or-nothing per document.  If the document or
#   any page cannot be read, ExtractionError propagates and the pages
#   already processed are discarded with it, so a partial index can
#   never reach the store.
#
# Concurrency model (extract_batch):
#   Pages of one document are read sequentially (PyMuPDF documents
#   are not thread-safe).  Independent documents are fanned out to a
#   ProcessPoolExecutor with at most EXTRACTION_MAX_WORKERS workers.
#   Results come back positionally aligned with the inputs; a failed
#   document yields None and does not affect the others.
# ────────────────────────────────────────────────────────────────

import hashlib
import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from concurrent.futures import ProcessPoolExecutor

from config import settings
from src.indexing.models import ExtractionResult, TextRun, WordSpan
from src.ingestion.pdf_text import DocumentOpenError, read_text_runs

logger = logging.getLogger(__name__)

RunSource = Callable[[bytes], Iterable[Sequence[TextRun]]]


class ExtractionError(RuntimeError):
    """A document could not be indexed.  No spans are returned for it."""

    def __init__(self, document_id: str, message: str, page_number: int | None = None) -> None:
        location = f" (page {page_number})" if page_number is not None else ""
        super().__init__(f"Extraction failed for {document_id}{location}: {message}")
        self.document_id = document_id
        self.page_number = page_number


def spans_from_runs(
    document_id: str, page_number: int, runs: Iterable[TextRun]
) -> tuple[list[WordSpan], str]:
    """Assign page offsets to runs by plain concatenation.

    Returns the spans and the concatenated page text they index into.
    """
    parts: list[str] = []
    spans: list[WordSpan] = []
    length = 0
    for run in runs:
        start = length
        parts.append(run.text)
        length += len(run.text)
        spans.append(
            WordSpan(
                document_id=document_id,
                page_number=page_number,
                text=run.text,
                bbox=run.bbox,
                start_offset=start,
                end_offset=length,
            )
        )
    return spans, "".join(parts)


def page_text(spans: Iterable[WordSpan]) -> str:
    """Concatenate span texts in offset order (spans of a single page)."""
    return "".join(span.text for span in sorted(spans, key=lambda s: s.start_offset))


def _iter_pages(
    pdf_bytes: bytes, document_id: str, run_source: RunSource
) -> Iterator[tuple[int, Sequence[TextRun]]]:
    try:
        for page_number, runs in enumerate(run_source(pdf_bytes), start=1):
            yield page_number, runs
    except DocumentOpenError as exc:
        raise ExtractionError(document_id, str(exc), page_number=exc.page_number) from exc


def extract_word_spans(
    pdf_bytes: bytes,
    document_id: str,
    *,
    run_source: RunSource = read_text_runs,
) -> ExtractionResult:
    """Extract every page's spans for one document, first page first."""
    all_spans: list[WordSpan] = []
    page_texts: list[str] = []

    for page_number, runs in _iter_pages(pdf_bytes, document_id, run_source):
        spans, text = spans_from_runs(document_id, page_number, runs)
        all_spans.extend(spans)
        page_texts.append(text)

    logger.debug(
        "extracted %d spans from %d pages for %s",
        len(all_spans), len(page_texts), document_id,
    )
    return ExtractionResult(
        document_id=document_id,
        page_count=len(page_texts),
        spans=all_spans,
        page_texts=page_texts,
        content_hash=hashlib.sha256(pdf_bytes).hexdigest(),
    )


def _extract_or_none(item: tuple[bytes, str]) -> ExtractionResult | None:
    # Runs inside a worker process; must stay a module-level function so
    # it can be pickled.
    pdf_bytes, document_id = item
    try:
        return extract_word_spans(pdf_bytes, document_id)
    except ExtractionError as exc:
        logger.warning("%s", exc)
        return None


def extract_batch(
    items: Sequence[tuple[bytes, str]],
    *,
    max_workers: int | None = None,
) -> list[ExtractionResult | None]:
    """Extract many ``(pdf_bytes, document_id)`` pairs in parallel.

    Output is aligned with ``items``; failed documents map to ``None``.
    """
    if not items:
        return []
    workers = max(1, max_workers or settings.extraction_max_workers)
    if workers == 1 or len(items) == 1:
        return [_extract_or_none(item) for item in items]

    with ProcessPoolExecutor(max_workers=min(workers, len(items))) as pool:
        # map() preserves input order regardless of completion order.
        return list(pool.map(_extract_or_none, items))
