from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from config import settings
from src.indexing.schema import init_schema


# ---------------------------------------------------------------------------
# Windows event loop fix: psycopg3 AsyncConnection requires SelectorEventLoop,
# not ProactorEventLoop (the default on Windows).
# ---------------------------------------------------------------------------
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


# ---------------------------------------------------------------------------
# Synthetic PDFs
# ---------------------------------------------------------------------------


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    """Build a PDF in memory: one list of text lines per page."""
    fitz = pytest.importorskip("fitz")

    def _make(pages: list[list[str]]) -> bytes:
        doc = fitz.open()
        try:
            for lines in pages:
                page = doc.new_page(width=595, height=842)
                for index, line in enumerate(lines):
                    page.insert_text((72, 72 + index * 20), line, fontsize=12)
            return doc.tobytes()
        finally:
            doc.close()

    return _make


# ---------------------------------------------------------------------------
# Database (integration tests skip without DATABASE_URL)
# ---------------------------------------------------------------------------


def _database_url() -> str:
    database_url = os.getenv("DATABASE_URL") or settings.database_url
    if not database_url:
        pytest.skip("Skipping span store integration tests: DATABASE_URL is not set.")
    return database_url


@pytest.fixture(scope="session")
def db_conn() -> Any:
    psycopg_module = pytest.importorskip(
        "psycopg",
        reason="Skipping DB integration tests: psycopg is not installed in this environment.",
    )
    conn = psycopg_module.connect(_database_url(), autocommit=True)
    with conn.cursor() as cur:
        # Prevent indefinite hangs when stale sessions hold DDL locks.
        cur.execute("SET lock_timeout = '5s';")
        cur.execute("SET statement_timeout = '60s';")
    init_schema(conn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def reset_span_tables(db_conn: Any) -> Callable[[], None]:
    def _reset() -> None:
        with db_conn.transaction():
            with db_conn.cursor() as cur:
                cur.execute("TRUNCATE TABLE word_spans;")
                cur.execute("TRUNCATE TABLE documents CASCADE;")

    return _reset


@pytest_asyncio.fixture
async def pg_store(db_conn: Any, reset_span_tables: Callable[[], None]) -> Any:
    """A PostgresSpanStore over a fresh pool, on empty tables."""
    from psycopg_pool import AsyncConnectionPool

    from src.indexing.store import PostgresSpanStore

    reset_span_tables()
    pool = AsyncConnectionPool(
        conninfo=_database_url(),
        min_size=1,
        max_size=2,
        open=False,
        kwargs={"autocommit": True},
    )
    await pool.open()
    try:
        yield PostgresSpanStore(pool)
    finally:
        await pool.close()
