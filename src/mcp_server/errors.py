"""Error response templates for MCP tool calls.

Each function raises ``ToolError`` (from FastMCP) so the MCP protocol
marks the response with ``is_error=True`` and the client model does not
mistake the text for a valid result.

Only genuine failures go through here.  A citation that cannot be
resolved or highlighted is a normal outcome and is reported with
``no_highlight`` as ordinary tool output.
"""

from __future__ import annotations

from typing import NoReturn

from mcp.server.fastmcp.exceptions import ToolError


def full_failure(exc: BaseException) -> NoReturn:
    """Format an unexpected failure, including the exception class and message."""
    raise ToolError(
        "[ERROR]\n"
        "The span index encountered an error.\n"
        "\n"
        f"Error type: {type(exc).__name__}\n"
        f"Details: {exc}\n"
        "\n"
        "Possible causes:\n"
        "- The database connection may have failed.\n"
        "- The PDF path may be unreadable.\n"
        "\n"
        "Please inform the user of this error."
    )


def extraction_failed(document_id: str) -> NoReturn:
    """The PDF could not be read; nothing was indexed for it."""
    raise ToolError(
        "[ERROR]\n"
        f"Could not extract text spans from {document_id}.\n"
        "\n"
        "The document is unreadable, encrypted, or has a corrupt page. "
        "No partial index was stored; citations against this document "
        "will stay unresolved until it is indexed successfully."
    )


def timeout(seconds: int | float) -> NoReturn:
    """Format a timeout error."""
    raise ToolError(
        "[ERROR]\n"
        f"The span index timed out after {int(seconds)}s.\n"
        "\n"
        "Large PDFs take the longest to index. "
        "Suggestion: retry, or split the document."
    )


def no_highlight(citation_label: str) -> str:
    """Plain response for a citation that maps to no stored span."""
    return (
        "[HIGHLIGHT]\n"
        f"No highlight available for {citation_label}.\n"
        "The cited range does not match the current span index of this document."
    )
