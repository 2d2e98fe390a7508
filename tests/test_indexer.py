"""Tests for src.indexing.indexer against the in-memory span store."""

from __future__ import annotations

import hashlib

import pytest

from config import settings
from src.indexing.indexer import PdfDocument, index_batch, index_document
from src.indexing.store import InMemorySpanStore
from src.ingestion.extractor import page_text


@pytest.fixture(autouse=True)
def _sequential_extraction(monkeypatch):
    monkeypatch.setattr(settings, "extraction_max_workers", 1)


@pytest.mark.asyncio
async def test_index_document_stores_spans(make_pdf):
    pdf = make_pdf([["Hello world"], ["Second page"]])
    store = InMemorySpanStore()

    report = await index_document(store, PdfDocument("a", pdf, "Alpha.pdf"))

    assert report.indexed == ["a"]
    assert report.failed == [] and report.skipped == []
    document = await store.get_document("a")
    assert document is not None
    assert document.display_name == "Alpha.pdf"
    assert document.page_count == 2
    assert document.content_hash == hashlib.sha256(pdf).hexdigest()

    spans = await store.query("a")
    assert report.span_counts["a"] == len(spans)
    assert "Hello world" in page_text(s for s in spans if s.page_number == 1)


@pytest.mark.asyncio
async def test_unchanged_document_is_skipped(make_pdf):
    store = InMemorySpanStore()
    doc = PdfDocument("a", make_pdf([["Hello"]]))
    await index_document(store, doc)

    report = await index_document(store, doc)
    assert report.skipped == ["a"]
    assert report.indexed == []


@pytest.mark.asyncio
async def test_force_reindexes(make_pdf):
    store = InMemorySpanStore()
    doc = PdfDocument("a", make_pdf([["Hello"]]))
    await index_document(store, doc)

    report = await index_batch(store, [doc], force=True)
    assert report.indexed == ["a"]


@pytest.mark.asyncio
async def test_changed_content_replaces_index(make_pdf):
    store = InMemorySpanStore()
    await index_document(store, PdfDocument("a", make_pdf([["Old text"]])))
    await index_document(store, PdfDocument("a", make_pdf([["New text"], ["More"]])))

    document = await store.get_document("a")
    assert document is not None and document.page_count == 2
    assert "Old" not in page_text(await store.query("a"))


@pytest.mark.asyncio
async def test_failed_document_does_not_block_others(make_pdf):
    store = InMemorySpanStore()
    report = await index_batch(
        store,
        [PdfDocument("bad", b"definitely not a pdf"), PdfDocument("good", make_pdf([["ok"]]))],
    )

    assert report.failed == ["bad"]
    assert report.indexed == ["good"]
    assert await store.get_document("bad") is None
    assert await store.query("bad") == []


@pytest.mark.asyncio
async def test_empty_batch():
    report = await index_batch(InMemorySpanStore(), [])
    assert report.indexed == [] and report.elapsed_ms == 0.0


def test_from_path_defaults(tmp_path, make_pdf):
    path = tmp_path / "Acme Policy.pdf"
    path.write_bytes(make_pdf([["x"]]))
    doc = PdfDocument.from_path(path)
    assert doc.document_id == "Acme Policy"
    assert doc.display_name == "Acme Policy.pdf"
    assert doc.content == path.read_bytes()


@pytest.mark.asyncio
async def test_failed_reindex_of_changed_content_drops_old_index(make_pdf):
    store = InMemorySpanStore()
    await index_document(store, PdfDocument("a", make_pdf([["old content"]])))

    report = await index_document(store, PdfDocument("a", b"corrupt replacement bytes"))

    assert report.failed == ["a"]
    assert await store.get_document("a") is None
    assert await store.query("a") == []


@pytest.mark.asyncio
async def test_failed_forced_reindex_of_same_content_keeps_index(make_pdf, monkeypatch):
    from src.indexing import indexer

    store = InMemorySpanStore()
    doc = PdfDocument("a", make_pdf([["same content"]]))
    await index_document(store, doc)

    monkeypatch.setattr(indexer, "extract_batch", lambda items: [None for _ in items])
    report = await index_batch(store, [doc], force=True)

    assert report.failed == ["a"]
    assert await store.get_document("a") is not None
