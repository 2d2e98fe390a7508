"""Parsed citations → structured plain-text response.

Assembles the [TEXT], [CITATIONS], and [STATS] sections returned by the
``render_citations`` tool, plus the [CORPUS STATUS] block of ``status``.

Sections use bracketed headers rather than Markdown headings because MCP
tool output is plain text, and bracketed headers are unambiguous for the
client model to parse.
"""

from __future__ import annotations

from collections.abc import Sequence

from src.indexing.models import IndexedDocument
from src.retrieval.citations import iter_citations, render_plain
from src.retrieval.models import Citation, Token


def _describe_location(citation: Citation) -> str:
    if not citation.has_location:
        return "no location"
    return f"page {citation.page}, chars {citation.start}-{citation.end}"


def _describe_target(citation: Citation) -> str:
    if citation.document_id is not None:
        return citation.document_id
    if citation.doc_ref is not None:
        return f"{citation.doc_ref} (unresolved)"
    return "excerpt"


def _build_citations(citations: Sequence[Citation]) -> str:
    lines = ["[CITATIONS]"]
    if not citations:
        lines.append("(none)")
        return "\n".join(lines)
    for citation in citations:
        status = "clickable" if citation.is_clickable else "inert"
        line = (
            f"[{citation.display_index}] {citation.type} — "
            f"{_describe_target(citation)} — {_describe_location(citation)} ({status})"
        )
        if citation.quote:
            line += f'\n    "{citation.quote}"'
        lines.append(line)
    return "\n".join(lines)


def _build_stats(citations: Sequence[Citation]) -> str:
    by_type = {"standard": 0, "numbered": 0, "freeform": 0}
    for citation in citations:
        by_type[citation.type] += 1
    clickable = sum(1 for c in citations if c.is_clickable)
    return (
        "[STATS]\n"
        f"Citations: {len(citations)} "
        f"(standard {by_type['standard']}, numbered {by_type['numbered']}, "
        f"freeform {by_type['freeform']})\n"
        f"Clickable: {clickable}"
    )


def format_tokens(tokens: Sequence[Token]) -> str:
    citations = list(iter_citations(tokens))
    return "\n\n".join(
        [
            "[TEXT]\n" + render_plain(tokens),
            _build_citations(citations),
            _build_stats(citations),
        ]
    )


def format_status(documents: Sequence[IndexedDocument]) -> str:
    lines = ["[CORPUS STATUS]", f"Documents indexed: {len(documents)}"]
    lines.append(f"Total spans: {sum(doc.span_count for doc in documents):,}")
    if documents:
        lines.append("")
        lines.append("Indexed documents:")
    for doc in documents:
        indexed = (
            doc.indexed_at.strftime("%Y-%m-%d %H:%M UTC") if doc.indexed_at else "unknown"
        )
        lines.append(
            f"- {doc.display_name} — {doc.id}\n"
            f"  ({doc.page_count} pages, {doc.span_count:,} spans, indexed {indexed})"
        )
    return "\n".join(lines)
