"""MCP tool definitions — ``index_pdf``, ``render_citations``, ``highlight``, ``status``.

  ``index_pdf``         — Extract word spans from a PDF on disk and store them.
  ``render_citations``  — Parse citation markers out of generated text and
                          resolve their document references against the
                          indexed documents.
  ``highlight``         — Project one citation onto its page and return the
                          rendered page image with the overlay.
  ``status``            — Report what is currently indexed.

Each tool function is registered on the ``FastMCP`` instance by
:mod:`server`.  Handlers access the shared ``CitationEngine`` via the
lifespan state dict.

Error handling:
  Misses (unresolved reference, offsets with no stored span) are normal
  tool output.  Real failures are logged and formatted via ``errors.py``.
"""

from __future__ import annotations

import asyncio
import logging

from mcp.server.fastmcp import Context, Image
from mcp.server.fastmcp.exceptions import ToolError

from config import settings
from src.mcp_server import errors
from src.mcp_server.formatter import format_status, format_tokens
from src.orchestration.engine import CitationEngine
from src.retrieval.models import Citation, SpanRef
from src.retrieval.prompt import citation_marker
from src.retrieval.resolver import resolve_document

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────


def _get_engine(ctx: Context) -> CitationEngine:
    """Retrieve the engine instance stored during lifespan startup."""
    return ctx.request_context.lifespan_context["engine"]


# ── index_pdf ─────────────────────────────────────────────────


async def index_pdf(
    path: str,
    ctx: Context,
    document_id: str | None = None,
    display_name: str | None = None,
    force: bool = False,
) -> str:
    """Extract word-level spans from a PDF and store them in the span index."""
    engine = _get_engine(ctx)
    await ctx.info(f"Indexing {path}…")
    try:
        report = await asyncio.wait_for(
            engine.index_pdf(
                path, document_id=document_id, display_name=display_name, force=force
            ),
            timeout=settings.mcp_tool_timeout,
        )
    except asyncio.TimeoutError:
        logger.error("index_pdf timed out after %ds", settings.mcp_tool_timeout)
        return errors.timeout(settings.mcp_tool_timeout)
    except Exception as exc:
        logger.error("index_pdf failed: %r", exc, exc_info=True)
        return errors.full_failure(exc)

    if report.failed:
        return errors.extraction_failed(report.failed[0])
    if report.skipped:
        return f"[INDEX]\n{report.skipped[0]} is already indexed (content unchanged)."
    doc_id = report.indexed[0]
    return (
        "[INDEX]\n"
        f"Indexed {doc_id}: {report.span_counts[doc_id]:,} spans "
        f"in {report.elapsed_ms:.0f}ms."
    )


# ── render_citations ──────────────────────────────────────────


async def render_citations(
    text: str,
    ctx: Context,
    span_refs: list[SpanRef] | None = None,
) -> str:
    """Parse citation markers in generated text and resolve their documents.

    ``span_refs`` is the ordered span list that numbered markers ``[n]``
    refer to (entry ``n-1``).
    """
    engine = _get_engine(ctx)
    try:
        tokens = await engine.render_citations(text, span_refs)
    except Exception as exc:
        logger.error("render_citations failed: %r", exc, exc_info=True)
        return errors.full_failure(exc)
    return format_tokens(tokens)


# ── highlight ─────────────────────────────────────────────────


async def highlight(
    pdf_path: str,
    document: str,
    page: int,
    start: int,
    end: int,
    ctx: Context,
) -> list[Image | str] | str:
    """Render the page a citation points to with the cited text highlighted.

    ``document`` may be a document id or display name; it is resolved the
    same way citation markers are.
    """
    engine = _get_engine(ctx)
    label = citation_marker(document, page, start, end)
    try:
        scope = await engine.documents_in_scope()
        document_id = resolve_document(document, scope)
        if document_id is None:
            return errors.no_highlight(f"{label} (unknown document)")

        citation = Citation(
            type="standard",
            doc_ref=document,
            document_id=document_id,
            page=page,
            start=start,
            end=end,
            display_index=1,
            source_position=0,
            marker=label,
        )
        result, png = await engine.highlight(citation, pdf_path)
    except ToolError:
        raise
    except Exception as exc:
        logger.error("highlight failed: %r", exc, exc_info=True)
        return errors.full_failure(exc)

    if result is None or png is None:
        return errors.no_highlight(label)
    x, y, width, height = result.bbox
    return [
        Image(data=png, format="png"),
        (
            "[HIGHLIGHT]\n"
            f"Document: {result.document_id}\n"
            f"Page: {result.page}\n"
            f"Box: x={x:.1f} y={y:.1f} w={width:.1f} h={height:.1f} "
            f"({result.span_count} spans)"
        ),
    ]


# ── status ────────────────────────────────────────────────────


async def status(ctx: Context, document_id: str | None = None) -> str:
    """Report indexed documents and span counts."""
    engine = _get_engine(ctx)
    try:
        if document_id:
            doc = await engine.store.get_document(document_id)
            if doc is None:
                return f"[CORPUS STATUS]\nDocument not indexed: {document_id}"
            return format_status([doc])
        return format_status(await engine.store.list_documents())
    except Exception as exc:
        logger.error("status tool failed: %r", exc, exc_info=True)
        return errors.full_failure(exc)
