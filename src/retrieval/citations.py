"""Citation parser — generated text → interleaved prose and citations.

Three marker grammars are recognised:

  standard  ``[CITATION:<doc>, [page] <page>, <start>, <end>(, extra…)]``
            Explicit document reference and page offsets.  The document
            reference is raw text and may contain commas; the resolver
            decides what it means.  A marker without a valid location
            stays in the prose.
  numbered  ``[n]``
            Location comes from the n-th (1-based) entry of a span list
            supplied alongside the text.  Out of range → no location, but
            the citation is still emitted so its number stays visible.
  freeform  ``Citation: "<excerpt>"``
            A quoted excerpt with no location.

Each grammar is scanned on its own and every match is collected before
anything is decided.  Overlaps are settled by precedence (standard, then
freeform, then numbered) so the characters a standard marker consumes can
never also produce a numbered citation.  Surviving matches are then sorted
by position and numbered: standard and freeform share one counter, numbered
citations keep their literal bracket number.

Parsing is pure: the same input always yields the same tokens.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from src.retrieval.models import Citation, CitationType, SpanRef, TextSegment, Token

logger = logging.getLogger(__name__)

# The whole bracket is matched first and its fields are read afterwards, so
# a document name may itself contain commas ("Smith, Jones & Co.pdf").
# Trailing parameters may contain one level of nested brackets, e.g.
# "[CITATION:A,1,0,5,[3]]", so the closing bracket is the outer one.
_STANDARD_RE = re.compile(
    r"\[CITATION:(?P<body>(?:[^\[\]]|\[[^\[\]]*\])*)\]",
    re.IGNORECASE,
)
_PAGE_FIELD_RE = re.compile(r"(?:page\s*)?(\d+)", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"\[(?P<number>\d+)\]")
_FREEFORM_RE = re.compile(r"Citation:\s*(?:\"(?P<straight>[^\"\n]+)\"|“(?P<curly>[^”\n]+)”)")

# Lower value wins an overlap.  A malformed standard marker still claims
# its characters (after freeform) so nothing inside it turns into a [n].
_PRECEDENCE: dict[CitationType, int] = {"standard": 0, "freeform": 1, "numbered": 3}
_INERT_PRECEDENCE = 2


@dataclass(frozen=True)
class _Match:
    """One grammar hit before numbering: tagged union of type + match + data."""

    type: CitationType
    start: int
    end: int
    marker: str
    data: dict[str, Any]
    # Malformed marker: claims its range, emits nothing.
    inert: bool = False


def _locate(body: str) -> tuple[str, int, int, int] | None:
    """Split a marker body into ``(doc_ref, page, start, end)``.

    The first split point followed by a valid page/start/end triple wins;
    whatever follows the triple is ignored.
    """
    fields = body.split(",")
    if not fields[0].strip():
        return None
    for index in range(1, len(fields) - 2):
        page_m = _PAGE_FIELD_RE.fullmatch(fields[index].strip())
        start_s, end_s = fields[index + 1].strip(), fields[index + 2].strip()
        if page_m is None or not start_s.isdecimal() or not end_s.isdecimal():
            continue
        page, start, end = int(page_m[1]), int(start_s), int(end_s)
        if page < 1 or end < start:
            continue
        return ",".join(fields[:index]).strip(), page, start, end
    return None


def _scan_standard(text: str) -> Iterator[_Match]:
    for m in _STANDARD_RE.finditer(text):
        location = _locate(m["body"])
        if location is None:
            # Malformed location: leave the marker in the prose, inert.
            logger.debug("ignoring malformed standard marker %r", m.group(0))
            yield _Match("standard", m.start(), m.end(), m.group(0), {}, inert=True)
            continue
        doc_ref, page, start, end = location
        yield _Match(
            type="standard",
            start=m.start(),
            end=m.end(),
            marker=m.group(0),
            data={"doc_ref": doc_ref, "page": page, "start": start, "end": end},
        )


def _scan_numbered(text: str) -> Iterator[_Match]:
    for m in _NUMBERED_RE.finditer(text):
        yield _Match(
            type="numbered",
            start=m.start(),
            end=m.end(),
            marker=m.group(0),
            data={"number": int(m["number"])},
        )


def _scan_freeform(text: str) -> Iterator[_Match]:
    for m in _FREEFORM_RE.finditer(text):
        quote = m["straight"] if m["straight"] is not None else m["curly"]
        yield _Match(
            type="freeform",
            start=m.start(),
            end=m.end(),
            marker=m.group(0),
            data={"quote": quote},
        )


def _rank(match: _Match) -> tuple[int, int]:
    return (_INERT_PRECEDENCE if match.inert else _PRECEDENCE[match.type], match.start)


def _collect_matches(text: str) -> list[_Match]:
    """Run every grammar over the whole text, settle overlaps, sort by position."""
    candidates = [*_scan_standard(text), *_scan_freeform(text), *_scan_numbered(text)]

    accepted: list[_Match] = []
    claimed: list[tuple[int, int]] = []
    for match in sorted(candidates, key=_rank):
        if any(match.start < end and start < match.end for start, end in claimed):
            continue
        claimed.append((match.start, match.end))
        if not match.inert:
            accepted.append(match)

    # sorted() is stable; positions are unique after overlap removal anyway.
    return sorted(accepted, key=lambda m: m.start)


def _numbered_citation(
    match: _Match, span_refs: Sequence[SpanRef] | None
) -> Citation:
    number: int = match.data["number"]
    fields: dict[str, Any] = {}
    if span_refs is not None and 1 <= number <= len(span_refs):
        ref = span_refs[number - 1]
        fields = {
            "doc_ref": ref.document_id,
            "page": ref.page,
            "start": ref.start,
            "end": ref.end,
            "quote": ref.text,
        }
    return Citation(
        type="numbered",
        display_index=number,
        source_position=match.start,
        marker=match.marker,
        **fields,
    )


def parse_citations(
    text: str, span_refs: Sequence[SpanRef] | None = None
) -> list[Token]:
    """Split ``text`` into prose segments and citations, in source order.

    ``span_refs[i]`` backs the numbered marker ``[i+1]``.  Text with no
    markers comes back as a single segment equal to the input.
    """
    matches = _collect_matches(text)
    if not matches:
        return [TextSegment(text=text)]

    tokens: list[Token] = []
    cursor = 0
    counter = 0
    for match in matches:
        if match.start > cursor:
            tokens.append(TextSegment(text=text[cursor:match.start]))
        cursor = match.end

        if match.type == "numbered":
            tokens.append(_numbered_citation(match, span_refs))
            continue

        counter += 1
        tokens.append(
            Citation(
                type=match.type,
                display_index=counter,
                source_position=match.start,
                marker=match.marker,
                **match.data,
            )
        )

    if cursor < len(text):
        tokens.append(TextSegment(text=text[cursor:]))
    return tokens


def iter_citations(tokens: Iterable[Token]) -> Iterator[Citation]:
    for token in tokens:
        if isinstance(token, Citation):
            yield token


def render_plain(tokens: Iterable[Token]) -> str:
    """Rebuild prose with each citation replaced by ``[display_index]``.

    Freeform citations keep their excerpt in quotes before the number.
    """
    parts: list[str] = []
    for token in tokens:
        if isinstance(token, TextSegment):
            parts.append(token.text)
        elif token.type == "freeform":
            parts.append(f"“{token.quote}” [{token.display_index}]")
        else:
            parts.append(f"[{token.display_index}]")
    return "".join(parts)
