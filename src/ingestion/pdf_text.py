"""PyMuPDF adapter for the two PDF primitives the index relies on.

1. Text runs: for every page, the ordered sequence of runs PyMuPDF reports
   in ``page.get_text("dict")`` (block → line → span).  A PyMuPDF "span" is
   a run of characters sharing one font, which is exactly the granularity
   the word-span index stores.  Run text is returned verbatim.
2. Opening a document from raw bytes, with a single error type for
   unreadable input so the extractor can fail fast.

Rendering lives in ``src.viewer.renderer``.
"""

from __future__ import annotations

from collections.abc import Iterator

import fitz  # PyMuPDF
from pymupdf import mupdf

from config import settings
from src.indexing.models import TextRun


# MuPDF raises its own hierarchy (FzErrorBase derives from Exception) next to
# the RuntimeError / ValueError PyMuPDF raises itself.
_PDF_ERRORS = (RuntimeError, ValueError, mupdf.FzErrorBase)


class DocumentOpenError(RuntimeError):
    """Raised when PyMuPDF cannot open a document or read one of its pages."""

    def __init__(self, message: str, page_number: int | None = None) -> None:
        super().__init__(message)
        self.page_number = page_number


def _text_flags() -> int:
    # TEXT_PRESERVE_WHITESPACE keeps run text exactly as encoded; without it
    # PyMuPDF rewrites tabs and odd spaces, which would shift offsets.
    flags = fitz.TEXT_PRESERVE_WHITESPACE
    if settings.extraction_preserve_ligatures:
        flags |= fitz.TEXT_PRESERVE_LIGATURES
    return flags


def open_pdf(pdf_bytes: bytes) -> fitz.Document:
    """Open a PDF from memory.  Raises ``DocumentOpenError`` on bad input."""
    if not pdf_bytes:
        raise DocumentOpenError("Document is empty.")
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (fitz.FileDataError, *_PDF_ERRORS) as exc:
        raise DocumentOpenError(f"Cannot open document: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise DocumentOpenError("Document is encrypted.")
    if doc.page_count == 0:
        # MuPDF "repairs" some non-PDF input into an empty document.
        doc.close()
        raise DocumentOpenError("Document has no pages.")
    return doc


def page_runs(page: fitz.Page) -> list[TextRun]:
    """Return the text runs of one page in PyMuPDF reading order."""
    page_dict = page.get_text("dict", flags=_text_flags())
    runs: list[TextRun] = []
    for block in page_dict.get("blocks", []):
        # type 1 = image block; no text.
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                x0, y0, x1, y1 = span["bbox"]
                runs.append(
                    TextRun(
                        text=span.get("text", ""),
                        x=float(x0),
                        y=float(y0),
                        width=float(x1 - x0),
                        height=float(y1 - y0),
                    )
                )
    return runs


def read_text_runs(pdf_bytes: bytes) -> Iterator[list[TextRun]]:
    """Yield the run list of every page, first page first.

    The document stays open only while the generator is being consumed.
    A page that PyMuPDF cannot parse raises ``DocumentOpenError`` with the
    1-based page number attached.
    """
    doc = open_pdf(pdf_bytes)
    try:
        for index in range(doc.page_count):
            try:
                page = doc.load_page(index)
                runs = page_runs(page)
            except _PDF_ERRORS as exc:
                raise DocumentOpenError(
                    f"Cannot read page {index + 1}: {exc}", page_number=index + 1
                ) from exc
            yield runs
    finally:
        doc.close()
