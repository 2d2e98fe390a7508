"""Unit tests for src.retrieval.projector."""

from __future__ import annotations

import asyncio

import pytest

from src.indexing.models import BBox, TextRun, WordSpan
from src.indexing.store import InMemorySpanStore
from src.ingestion.extractor import spans_from_runs
from src.retrieval.models import Citation
from src.retrieval.projector import HighlightProjector, union_bbox


class RecordingViewer:
    def __init__(self) -> None:
        self.scrolled: list[int] = []
        self.drawn: list[tuple[int, BBox]] = []

    def scroll_to_page(self, page: int) -> None:
        self.scrolled.append(page)

    def draw_highlight(self, page: int, bbox: BBox) -> None:
        self.drawn.append((page, bbox))


class GatedStore(InMemorySpanStore):
    """Store whose lookups block until the test releases them."""

    def __init__(self) -> None:
        super().__init__()
        self.gates: dict[int, asyncio.Event] = {}
        self.started: dict[int, asyncio.Event] = {}

    async def find_covering(self, document_id, page, start, end):
        self.started.setdefault(start, asyncio.Event()).set()
        await self.gates.setdefault(start, asyncio.Event()).wait()
        return await super().find_covering(document_id, page, start, end)


class FailingStore(InMemorySpanStore):
    async def find_covering(self, document_id, page, start, end):
        raise ConnectionError("database went away")


def _citation(
    start: int,
    end: int,
    *,
    page: int = 1,
    document_id: str | None = "doc",
    index: int = 1,
) -> Citation:
    return Citation(
        type="standard",
        doc_ref="doc",
        document_id=document_id,
        page=page,
        start=start,
        end=end,
        display_index=index,
        source_position=0,
        marker=f"[CITATION:doc,{page},{start},{end}]",
    )


async def _hello_world_store(store: InMemorySpanStore | None = None) -> InMemorySpanStore:
    store = store or InMemorySpanStore()
    spans, text = spans_from_runs(
        "doc",
        1,
        [TextRun("Hello", 0, 0, 40, 10), TextRun(" world", 40, 0, 50, 10)],
    )
    assert text == "Hello world"
    await store.save("doc", spans)
    return store


# ── union_bbox ────────────────────────────────────────────────


def test_union_bbox_empty():
    assert union_bbox([]) is None


def test_union_bbox_spans_lines():
    spans = [
        WordSpan("d", 1, "ab", BBox(10, 20, 30, 10), 0, 2),
        WordSpan("d", 1, "cd", BBox(5, 32, 20, 12), 2, 4),
    ]
    assert union_bbox(spans) == BBox(5, 20, 35, 24)


# ── project ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_end_to_end_union_of_two_runs():
    store = await _hello_world_store()
    viewer = RecordingViewer()
    projector = HighlightProjector(store, viewer)

    highlight = await projector.click(_citation(3, 8))

    assert highlight is not None
    assert highlight.bbox == (0, 0, 90, 10)
    assert highlight.span_count == 2
    assert viewer.scrolled == [1]
    assert viewer.drawn == [(1, BBox(0, 0, 90, 10))]


@pytest.mark.asyncio
async def test_single_span_box():
    projector = HighlightProjector(await _hello_world_store(), RecordingViewer())
    highlight = await projector.project(_citation(6, 9))
    assert highlight is not None
    assert highlight.bbox == (40, 0, 50, 10)


@pytest.mark.asyncio
async def test_gap_between_spans_is_silent_miss():
    store = InMemorySpanStore()
    await store.save(
        "doc",
        [
            WordSpan("doc", 1, "ab", BBox(0, 0, 10, 10), 0, 2),
            WordSpan("doc", 1, "cd", BBox(20, 0, 10, 10), 6, 8),
        ],
    )
    viewer = RecordingViewer()
    projector = HighlightProjector(store, viewer)

    assert await projector.click(_citation(3, 5)) is None
    assert viewer.scrolled == []
    assert viewer.drawn == []


@pytest.mark.asyncio
async def test_wrong_page_and_unknown_document_miss():
    projector = HighlightProjector(await _hello_world_store(), RecordingViewer())
    assert await projector.project(_citation(0, 5, page=2)) is None
    assert await projector.project(_citation(0, 5, document_id="other")) is None


@pytest.mark.asyncio
async def test_unresolved_or_locationless_citation_is_not_projected():
    projector = HighlightProjector(await _hello_world_store(), RecordingViewer())
    assert await projector.click(_citation(0, 5, document_id=None)) is None
    inert = Citation(
        type="numbered", display_index=2, source_position=0, marker="[2]"
    )
    assert await projector.click(inert) is None


@pytest.mark.asyncio
async def test_store_failure_is_logged_not_raised(caplog):
    viewer = RecordingViewer()
    projector = HighlightProjector(FailingStore(), viewer)
    with caplog.at_level("WARNING"):
        assert await projector.click(_citation(0, 5)) is None
    assert "highlight lookup failed" in caplog.text
    assert viewer.drawn == []


# ── click cancellation ────────────────────────────────────────


@pytest.mark.asyncio
async def test_stale_click_never_overwrites_newer_highlight():
    store = await _hello_world_store(GatedStore())
    viewer = RecordingViewer()
    projector = HighlightProjector(store, viewer)

    first = asyncio.create_task(projector.click(_citation(0, 5, index=1)))
    await store.started.setdefault(0, asyncio.Event()).wait()

    second = asyncio.create_task(projector.click(_citation(6, 9, index=2)))
    await store.started.setdefault(6, asyncio.Event()).wait()

    # Release the stale lookup first; it was cancelled and must not draw.
    store.gates.setdefault(0, asyncio.Event()).set()
    store.gates.setdefault(6, asyncio.Event()).set()

    assert await first is None
    newer = await second
    assert newer is not None
    assert viewer.drawn == [(1, BBox(40, 0, 50, 10))]
    assert viewer.scrolled == [1]


@pytest.mark.asyncio
async def test_sequential_clicks_each_draw():
    viewer = RecordingViewer()
    projector = HighlightProjector(await _hello_world_store(), viewer)
    await projector.click(_citation(0, 5))
    await projector.click(_citation(6, 9))
    assert [bbox for _, bbox in viewer.drawn] == [BBox(0, 0, 40, 10), BBox(40, 0, 50, 10)]


@pytest.mark.asyncio
async def test_cancelling_the_caller_propagates():
    store = await _hello_world_store(GatedStore())
    projector = HighlightProjector(store, RecordingViewer())
    task = asyncio.create_task(projector.click(_citation(0, 5)))
    await store.started.setdefault(0, asyncio.Event()).wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
