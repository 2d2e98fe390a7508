"""Span list → prompt context blocks for the text-generation collaborator.

Each span becomes a ``[CITATION:<doc>,<page>,<start>,<end>]`` header line
followed by the span text.  A model that quotes a block back verbatim
produces exactly the standard marker the citation parser recognises, with
offsets that already match the stored index.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.indexing.models import WordSpan
from src.retrieval.models import SpanRef


def citation_marker(document_id: str, page: int, start: int, end: int) -> str:
    return f"[CITATION:{document_id},{page},{start},{end}]"


def spans_to_prompt(document_id: str, spans: Iterable[WordSpan]) -> str:
    return "\n".join(
        f"{citation_marker(document_id, span.page_number, span.start_offset, span.end_offset)}\n"
        f"{span.text}"
        for span in spans
    )


def spans_to_refs(spans: Iterable[WordSpan]) -> list[SpanRef]:
    """Ordered span list for numbered citations: ``[i+1]`` ↔ ``refs[i]``."""
    return [
        SpanRef(
            document_id=span.document_id,
            page=span.page_number,
            start=span.start_offset,
            end=span.end_offset,
            text=span.text,
        )
        for span in spans
    ]
