# schema.py is just SQL wrapped in Python

from __future__ import annotations

from psycopg import Connection

# runs a series of CREATE TABLE / INDEX IF NOT EXISTS against the postgres database
# IF NOT EXISTS ensures repeated calls are safe

# documents - one row per indexed PDF. id and display_name are what citation resolution matches against
# word_spans - one row per text run. bbox is stored as four columns so the projector can read
# rectangles without parsing; offsets are half-open [start_offset, end_offset) into the page text

# the (document_id, page_number, start_offset) index serves both ordered reads and
# the overlap lookup the highlight projector runs on every citation click
def init_schema(conn: Connection) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                page_count INTEGER NOT NULL,
                indexed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS word_spans (
                document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                page_number INTEGER NOT NULL CHECK (page_number >= 1),
                start_offset INTEGER NOT NULL CHECK (start_offset >= 0),
                end_offset INTEGER NOT NULL,
                text TEXT NOT NULL,
                x DOUBLE PRECISION NOT NULL,
                y DOUBLE PRECISION NOT NULL,
                width DOUBLE PRECISION NOT NULL,
                height DOUBLE PRECISION NOT NULL,
                CHECK (end_offset >= start_offset)
            );
            """
        )

        # Not unique: zero-length runs legitimately share a start offset
        # with the run that follows them.
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS word_spans_doc_page_offset_idx
            ON word_spans (document_id, page_number, start_offset);
            """
        )

        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS documents_display_name_idx
            ON documents (display_name);
            """
        )

    conn.commit()
