from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives next to this file; MCP clients often launch the server from
# an unrelated working directory.
_ENV_FILE = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), case_sensitive=False)

    # ── Span store ────────────────────────────────────────────
    database_url: str = Field(default="", validation_alias="DATABASE_URL")
    span_store_pool_min_size: int = Field(
        default=2, validation_alias="SPAN_STORE_POOL_MIN_SIZE"
    )
    span_store_pool_max_size: int = Field(
        default=10, validation_alias="SPAN_STORE_POOL_MAX_SIZE"
    )

    # ── Extraction ────────────────────────────────────────────
    # Independent documents are extracted in worker processes.  PyMuPDF
    # documents cannot be shared between threads, so pages of a single
    # document are always read sequentially.
    extraction_max_workers: int = Field(
        default=4, validation_alias="EXTRACTION_MAX_WORKERS"
    )
    # Keep ligature glyphs (e.g. "ﬁ") as single characters in run text.
    # Changing this changes every offset of an already indexed document,
    # so re-index after flipping it.
    extraction_preserve_ligatures: bool = Field(
        default=True, validation_alias="EXTRACTION_PRESERVE_LIGATURES"
    )

    # ── Rendering / highlights ────────────────────────────────
    # Zoom factor applied when rasterising a page.  Highlight boxes are
    # stored in page points and scaled by the same matrix.
    render_zoom: float = Field(default=2.0, validation_alias="RENDER_ZOOM")
    # RGB components in 0..1, PyMuPDF colour convention.
    highlight_color: tuple[float, float, float] = Field(
        default=(1.0, 0.85, 0.0), validation_alias="HIGHLIGHT_COLOR"
    )
    highlight_opacity: float = Field(default=0.4, validation_alias="HIGHLIGHT_OPACITY")
    # Open PDFs kept in memory for highlighting; least recently used goes first.
    viewer_max_sessions: int = Field(default=8, validation_alias="VIEWER_MAX_SESSIONS")

    # ── MCP Server ────────────────────────────────────────────
    # Transport protocol: "stdio" for desktop clients that launch the
    # server as a subprocess, or "streamable-http" for hosted deployments.
    mcp_transport: str = Field(
        default="stdio", validation_alias="MCP_TRANSPORT"
    )
    # Bind address when serving streamable-http.
    mcp_host: str = Field(
        default="0.0.0.0", validation_alias="MCP_HOST"
    )
    # Bind port when serving streamable-http.
    mcp_port: int = Field(
        default=8765, validation_alias="MCP_PORT"
    )
    # Optional bearer token for authenticating MCP clients over HTTP.
    mcp_auth_token: str | None = Field(
        default=None, validation_alias="MCP_AUTH_TOKEN"
    )
    # Hard timeout (seconds) for a single tool call.  Indexing a large PDF
    # is the slowest operation the server performs.
    mcp_tool_timeout: int = Field(
        default=120, validation_alias="MCP_TOOL_TIMEOUT"
    )
    # Root log level of the server process.
    mcp_log_level: str = Field(
        default="INFO", validation_alias="MCP_LOG_LEVEL"
    )


settings = Settings()
