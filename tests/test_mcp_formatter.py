"""Unit tests for src.mcp_server.formatter."""

from __future__ import annotations

from datetime import datetime, timezone

from src.indexing.models import IndexedDocument
from src.mcp_server.formatter import format_status, format_tokens
from src.retrieval.citations import parse_citations
from src.retrieval.models import DocumentRef, SpanRef
from src.retrieval.resolver import resolve_citations


def _tokens():
    text = (
        "Coverage applies [CITATION:Acme,1,0,5]. See also [1] and [2]. "
        'Citation: "notify within 30 days"'
    )
    refs = [SpanRef(document_id="acme", page=2, start=10, end=20, text="notice")]
    return resolve_citations(
        parse_citations(text, refs), [DocumentRef(id="acme", display_name="Acme")]
    )


class TestFormatTokens:
    def test_sections_in_order(self):
        output = format_tokens(_tokens())
        assert output.index("[TEXT]") < output.index("[CITATIONS]") < output.index("[STATS]")

    def test_text_uses_display_indices(self):
        output = format_tokens(_tokens())
        assert "Coverage applies [1]. See also [1] and [2]." in output
        assert "“notify within 30 days” [2]" in output

    def test_citation_lines(self):
        output = format_tokens(_tokens())
        assert "[1] standard — acme — page 1, chars 0-5 (clickable)" in output
        assert "[2] numbered — excerpt — no location (inert)" in output
        assert '"notify within 30 days"' in output

    def test_unresolved_reference_is_labelled(self):
        output = format_tokens(parse_citations("x [CITATION:Globex,1,0,5]"))
        assert "Globex (unresolved)" in output
        assert "(inert)" in output

    def test_stats(self):
        output = format_tokens(_tokens())
        assert "Citations: 4 (standard 1, numbered 2, freeform 1)" in output
        assert "Clickable: 2" in output

    def test_no_citations(self):
        output = format_tokens(parse_citations("Plain answer."))
        assert "[TEXT]\nPlain answer." in output
        assert "[CITATIONS]\n(none)" in output
        assert "Citations: 0" in output


class TestFormatStatus:
    def test_empty(self):
        output = format_status([])
        assert "[CORPUS STATUS]" in output
        assert "Documents indexed: 0" in output
        assert "Total spans: 0" in output
        assert "Indexed documents:" not in output

    def test_lists_documents(self):
        documents = [
            IndexedDocument(
                id="acme",
                display_name="Acme.pdf",
                content_hash="h",
                page_count=12,
                span_count=1500,
                indexed_at=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
            ),
            IndexedDocument(id="b", display_name="B.pdf", content_hash="h", page_count=1),
        ]
        output = format_status(documents)
        assert "Documents indexed: 2" in output
        assert "Total spans: 1,500" in output
        assert "- Acme.pdf — acme" in output
        assert "(12 pages, 1,500 spans, indexed 2024-05-01 09:30 UTC)" in output
        assert "indexed unknown" in output
