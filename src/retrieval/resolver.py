"""Document resolver — raw citation document reference → document id.

Two explicit phases, tried in order:

  1. Exact: the reference equals a candidate id, otherwise a candidate
     display name.  Ids are checked across all candidates before any
     display name is.
  2. Fuzzy: strip every non-alphanumeric character and lower-case both
     sides; the first candidate whose normalised name contains the
     normalised reference, or is contained by it, wins.

Exact always beats fuzzy, because one document's name can legitimately be
a substring of another's ("Acme" vs "Acme Corp").  Resolution never
raises; no match is reported as ``None``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from src.retrieval.models import Citation, DocumentRef, Token

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")


def normalize_name(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())


def exact_match(doc_ref: str, candidates: Sequence[DocumentRef]) -> str | None:
    for candidate in candidates:
        if candidate.id == doc_ref:
            return candidate.id
    for candidate in candidates:
        if candidate.display_name == doc_ref:
            return candidate.id
    return None


def fuzzy_match(doc_ref: str, candidates: Sequence[DocumentRef]) -> str | None:
    needle = normalize_name(doc_ref)
    if not needle:
        return None
    for candidate in candidates:
        name = normalize_name(candidate.display_name)
        # An empty normalised name ("***", "...") would contain-match anything.
        if name and (needle in name or name in needle):
            return candidate.id
    return None


def resolve_document(doc_ref: str | None, candidates: Iterable[DocumentRef]) -> str | None:
    """Resolve a raw reference against the documents in scope."""
    if doc_ref is None:
        return None
    reference = doc_ref.strip()
    if not reference:
        return None
    pool = list(candidates)
    document_id = exact_match(reference, pool)
    if document_id is None:
        document_id = fuzzy_match(reference, pool)
        if document_id is not None:
            logger.debug("fuzzy-resolved %r to %s", reference, document_id)
    if document_id is None:
        logger.debug("unresolved document reference %r", reference)
    return document_id


def resolve_citations(tokens: Iterable[Token], candidates: Iterable[DocumentRef]) -> list[Token]:
    """Return ``tokens`` with ``document_id`` set on every resolvable citation.

    Citations are copied, never mutated, so the parser output can be
    resolved again against a different scope.
    """
    pool = list(candidates)
    resolved: list[Token] = []
    for token in tokens:
        if isinstance(token, Citation) and token.doc_ref is not None:
            document_id = resolve_document(token.doc_ref, pool)
            if document_id is not None:
                token = token.model_copy(update={"document_id": document_id})
        resolved.append(token)
    return resolved
