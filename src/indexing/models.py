# models.py defines the in-memory shapes the extraction and indexing layers pass around
# does not touch the database or any logic - just shape definitions

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple


# (x, y, width, height) in PyMuPDF page space: origin top-left, y grows downward, PDF points.
# the renderer draws in the same space, so nothing downstream flips the y axis
class BBox(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def x1(self) -> float:
        return self.x + self.width

    @property
    def y1(self) -> float:
        return self.y + self.height


# one text run on one page; offsets index into that page's concatenated run text
# frozen - spans are written once at ingestion and never mutated
@dataclass(frozen=True)
class WordSpan:
    document_id: str
    page_number: int  # 1-based
    text: str
    bbox: BBox
    start_offset: int
    end_offset: int


# raw run as the PDF primitive yields it, before any offset bookkeeping
@dataclass(frozen=True)
class TextRun:
    text: str
    x: float
    y: float
    width: float
    height: float

    @property
    def bbox(self) -> BBox:
        return BBox(self.x, self.y, self.width, self.height)


# everything one extractor pass produced for a document
# page_texts[i] is the concatenated text of page i+1 - the single source of truth for offsets
@dataclass
class ExtractionResult:
    document_id: str
    page_count: int
    spans: list[WordSpan] = field(default_factory=list)
    page_texts: list[str] = field(default_factory=list)
    content_hash: str = ""


# one row of the documents table
@dataclass
class IndexedDocument:
    id: str
    display_name: str
    content_hash: str
    page_count: int
    span_count: int = 0
    indexed_at: datetime | None = None
