"""SpanCite MCP server.

Wires the four tools onto a ``FastMCP`` app whose lifespan owns one
``CitationEngine`` (span store + viewer sessions), then serves it.

Transports:
  - ``stdio`` (default): the MCP client spawns this process and talks
    JSON-RPC over stdin/stdout.
  - ``streamable-http``: serves on ``MCP_HOST:MCP_PORT``.  When
    ``MCP_AUTH_TOKEN`` is set, every request must carry it as a Bearer
    token.

stdout belongs to the protocol under stdio, so log records are written
to stderr only (``_configure_logging``).

    python -m src.mcp_server
    python -m src.mcp_server --transport streamable-http
"""

from __future__ import annotations

import argparse
import logging
import secrets
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from config import settings
from src.mcp_server.tools import highlight, index_pdf, render_citations, status
from src.orchestration.engine import CitationEngine

logger = logging.getLogger(__name__)

_TRANSPORTS = ("stdio", "streamable-http")

_INSTRUCTIONS = (
    "SpanCite indexes PDFs at word level and turns citation markers in "
    "generated text into clickable, highlightable references. "
    "Call 'index_pdf' once per document. "
    "Call 'render_citations' on generated text to number its citations "
    "and see which ones point at an indexed page location. "
    "Call 'highlight' to see the exact region of the page a citation covers. "
    "Call 'status' to check what is indexed."
)


@asynccontextmanager
async def lifespan(app: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Start the engine for the lifetime of the server.

    Tool handlers reach it as ``ctx.request_context.lifespan_context["engine"]``.
    """
    engine = CitationEngine()
    await engine.start()
    logger.info("span index ready")
    try:
        yield {"engine": engine}
    finally:
        await engine.stop()
        logger.info("span index closed")


def create_server() -> FastMCP:
    mcp = FastMCP(
        "SpanCite",
        instructions=_INSTRUCTIONS,
        lifespan=lifespan,
        host=settings.mcp_host,
        port=settings.mcp_port,
        log_level=settings.mcp_log_level.upper(),
    )

    mcp.add_tool(
        index_pdf,
        name="index_pdf",
        description=(
            "Extract word-level text spans (text, page, bounding box, character "
            "offsets) from a PDF file and store them. Indexing is all-or-nothing: "
            "an unreadable page means nothing is stored for the document. "
            "Unchanged documents are skipped unless force=true."
        ),
    )
    mcp.add_tool(
        render_citations,
        name="render_citations",
        description=(
            "Parse citation markers out of generated text: "
            "[CITATION:<doc>,<page>,<start>,<end>], numbered [n] markers "
            "(resolved against the optional span_refs list), and "
            'Citation: "<quote>" excerpts. Returns the prose with display '
            "numbers, a [CITATIONS] list, and [STATS]."
        ),
    )
    # Returns an image block, so no structured output schema.
    mcp.add_tool(
        highlight,
        name="highlight",
        description=(
            "Render the page a citation points to with the cited character "
            "range highlighted. Returns the page image and the box in PDF "
            "points, or a note when no stored span covers the range."
        ),
        structured_output=False,
    )
    mcp.add_tool(
        status,
        name="status",
        description="List indexed documents with page and span counts.",
    )
    return mcp


def _configure_logging() -> None:
    """Send log records to stderr; safe to call more than once."""
    root = logging.getLogger()
    root.setLevel(settings.mcp_log_level.upper())
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
    )
    root.addHandler(handler)


def _bearer_token_middleware(token: str):
    """Starlette middleware rejecting requests without ``Bearer <token>``."""
    from starlette.middleware import Middleware
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import PlainTextResponse

    expected = f"Bearer {token}"

    class _RequireToken(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            supplied = request.headers.get("authorization", "")
            # compare_digest keeps the check constant-time.
            if not secrets.compare_digest(supplied.encode(), expected.encode()):
                return PlainTextResponse("Unauthorized", status_code=401)
            return await call_next(request)

    return Middleware(_RequireToken)


def _serve_authenticated_http(mcp: FastMCP, token: str) -> None:
    import uvicorn
    from starlette.applications import Starlette
    from starlette.routing import Mount

    app = Starlette(
        routes=[Mount("/", app=mcp.streamable_http_app())],
        middleware=[_bearer_token_middleware(token)],
    )
    logger.info("serving HTTP on %s:%d with token auth", settings.mcp_host, settings.mcp_port)
    uvicorn.run(
        app,
        host=settings.mcp_host,
        port=settings.mcp_port,
        log_level=settings.mcp_log_level.lower(),
    )


def main() -> None:
    parser = argparse.ArgumentParser(prog="spancite-mcp", description="SpanCite MCP server")
    parser.add_argument(
        "--transport",
        choices=_TRANSPORTS,
        default=settings.mcp_transport,
        help="default: %(default)s",
    )
    transport = parser.parse_args().transport

    _configure_logging()
    mcp = create_server()
    logger.info("starting SpanCite (%s)", transport)

    if transport == "streamable-http":
        if settings.mcp_auth_token:
            _serve_authenticated_http(mcp, settings.mcp_auth_token)
            return
        logger.warning(
            "serving HTTP on %s:%d without auth (MCP_AUTH_TOKEN unset)",
            settings.mcp_host, settings.mcp_port,
        )
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
