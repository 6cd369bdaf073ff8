"""SQLite schema shared by the document store and the vector store.

Both providers live in one database file so the chunk-append transaction
can check that its owning document still exists.  ``embeddings`` rows
reference ``documents`` with a foreign key, which SQLite only enforces when
``PRAGMA foreign_keys`` is on for the connection -- :func:`connect` does
that for every connection.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

_CREATE_TABLES_SQL = [
    f"""\
CREATE TABLE IF NOT EXISTS collections (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL,
    description TEXT    NOT NULL DEFAULT '',
    org_slug    TEXT    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT {_NOW},
    updated_at  TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(name, org_slug)
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS documents (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    name           TEXT    NOT NULL,
    mime_type      TEXT    NOT NULL,
    content_ref    TEXT    NOT NULL,
    collection_id  INTEGER REFERENCES collections(id),
    org_slug       TEXT    NOT NULL,
    status         TEXT    NOT NULL DEFAULT 'pending',
    failure_reason TEXT,
    created_at     TEXT    NOT NULL DEFAULT {_NOW},
    updated_at     TEXT    NOT NULL DEFAULT {_NOW}
);
""",
    f"""\
CREATE TABLE IF NOT EXISTS embeddings (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id INTEGER NOT NULL REFERENCES documents(id),
    chunk_index INTEGER NOT NULL,
    content     TEXT    NOT NULL,
    embedding   TEXT    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS store_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_org ON documents(org_slug);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_document ON embeddings(document_id);",
]


@asynccontextmanager
async def connect(db_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection with row access by name and foreign keys enforced."""
    async with aiosqlite.connect(str(db_path)) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db


async def apply_schema(db_path: Path) -> None:
    """Create all tables and indices if they do not exist.  Idempotent."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with connect(db_path) as db:
        # WAL lets searches read while a worker's append transaction is open.
        await db.execute("PRAGMA journal_mode = WAL")
        for table_sql in _CREATE_TABLES_SQL:
            await db.execute(table_sql)
        for idx_sql in _CREATE_INDICES_SQL:
            await db.execute(idx_sql)
        await db.commit()
