from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

CitationType = Literal["standard", "numbered", "freeform"]


class Citation(BaseModel):
    """A citation marker found in generated text, normalised.

    ``standard`` citations carry their own location; ``numbered`` ones
    borrow it from an external span list (and may have none);
    ``freeform`` ones never have a location.
    """

    type: CitationType

    # Raw document reference as written (id or display name).  None for freeform.
    doc_ref: str | None = None
    # Filled in by the resolver; None until then or when unresolved.
    document_id: str | None = None

    page: int | None = None
    start: int | None = None
    end: int | None = None

    display_index: int
    # Offset of the marker in the generated text (Python string index).
    source_position: int
    # The exact marker text that was excised.
    marker: str
    # Quoted excerpt for freeform citations.
    quote: str | None = None

    @property
    def has_location(self) -> bool:
        return self.page is not None and self.start is not None and self.end is not None

    @property
    def is_clickable(self) -> bool:
        """True when the citation can be projected onto a page."""
        return self.has_location and self.document_id is not None


class TextSegment(BaseModel):
    """Verbatim prose between citation markers."""

    text: str


Token = TextSegment | Citation


class SpanRef(BaseModel):
    """Entry of the ordered span list that backs ``[n]`` citations."""

    document_id: str
    page: int
    start: int
    end: int
    text: str | None = None


class DocumentRef(BaseModel):
    """A document visible to the resolving context."""

    id: str
    display_name: str


class Highlight(BaseModel):
    """Overlay for one citation: the page to show and the box to draw.

    ``bbox`` is ``(x, y, width, height)`` in PDF page points, the same
    space the stored spans use.
    """

    document_id: str
    page: int
    bbox: tuple[float, float, float, float]
    span_count: int
