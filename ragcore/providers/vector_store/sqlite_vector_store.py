"""SQLite-backed vector store.

Stores one ``embeddings`` row per chunk with the vector serialised as JSON
text.  A document's chunk set is written in a single ``BEGIN IMMEDIATE``
transaction that first confirms the document still exists, so a document
deleted while its ingestion job was running never gets orphan chunks, and
searches never observe half a document.

The first vector ever written fixes the store-wide dimension (kept in
``store_meta``); later writes with another dimension are rejected.
"""

from __future__ import annotations

import json
from pathlib import Path

import aiosqlite
import structlog

from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.rag import ChunkRecord, StoredChunk
from ragcore.providers.document_store.schema import apply_schema, connect
from ragcore.utils.errors import DocumentNotFoundError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ragcore.db")
_DIMENSION_KEY = "vector_dimension"

_INSERT_CHUNK_SQL = """\
INSERT INTO embeddings (document_id, chunk_index, content, embedding)
VALUES (?, ?, ?, ?);
"""

_LOAD_SCOPED_SQL = """\
SELECT e.document_id, e.chunk_index, e.content, e.embedding
FROM embeddings e
JOIN documents d ON d.id = e.document_id
WHERE d.collection_id IN ({placeholders}){tenant_clause}
ORDER BY e.document_id, e.chunk_index;
"""


class SQLiteVectorStore(IVectorStoreProvider):
    """Chunk and vector persistence in the shared SQLite database."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        await apply_schema(self._db_path)
        logger.info("vector_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append_chunks(self, document_id: int, chunks: list[ChunkRecord]) -> int:
        if not chunks:
            raise VectorStoreError(
                message=f"Refusing to store an empty chunk set for document {document_id}",
                provider_name=self.get_provider_name(),
            )
        indices = [c.chunk_index for c in chunks]
        if indices != list(range(len(chunks))):
            raise VectorStoreError(
                message=f"Chunk indices for document {document_id} are not a dense 0..n-1 sequence",
                provider_name=self.get_provider_name(),
            )
        dims = {len(c.vector) for c in chunks}
        if len(dims) != 1:
            raise VectorStoreError(
                message=f"Mixed vector dimensions {sorted(dims)} for document {document_id}",
                provider_name=self.get_provider_name(),
            )
        dimension = dims.pop()

        rows = [
            (document_id, c.chunk_index, c.content, json.dumps(c.vector))
            for c in chunks
        ]

        async with connect(self._db_path) as db:
            try:
                await db.execute("BEGIN IMMEDIATE")
                cursor = await db.execute("SELECT 1 FROM documents WHERE id = ?", (document_id,))
                if await cursor.fetchone() is None:
                    raise DocumentNotFoundError(
                        message=f"Document {document_id} was deleted before its chunks were stored",
                        provider_name=self.get_provider_name(),
                    )
                await self._check_dimension(db, dimension)
                await db.execute("DELETE FROM embeddings WHERE document_id = ?", (document_id,))
                await db.executemany(_INSERT_CHUNK_SQL, rows)
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise VectorStoreError(
                    message=f"Failed to store chunks for document {document_id}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            except BaseException:
                await db.rollback()
                raise

        logger.info(
            "chunks_appended",
            document_id=document_id,
            chunks=len(rows),
            dimension=dimension,
        )
        return len(rows)

    async def _check_dimension(self, db: aiosqlite.Connection, dimension: int) -> None:
        cursor = await db.execute("SELECT value FROM store_meta WHERE key = ?", (_DIMENSION_KEY,))
        row = await cursor.fetchone()
        if row is None:
            await db.execute(
                "INSERT INTO store_meta (key, value) VALUES (?, ?)",
                (_DIMENSION_KEY, str(dimension)),
            )
            return
        if int(row["value"]) != dimension:
            raise VectorStoreError(
                message=f"Vector dimension {dimension} does not match store dimension {row['value']}",
                provider_name=self.get_provider_name(),
            )

    async def delete_chunks_for_document(self, document_id: int) -> int:
        try:
            async with connect(self._db_path) as db:
                cursor = await db.execute("DELETE FROM embeddings WHERE document_id = ?", (document_id,))
                deleted = cursor.rowcount
                await db.commit()
        except aiosqlite.Error as exc:
            raise VectorStoreError(
                message=f"Failed to delete chunks for document {document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chunks_deleted", document_id=document_id, chunks=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_chunks_for_collections(
        self,
        collection_ids: list[int],
        org_slug: str | None = None,
    ) -> list[StoredChunk]:
        if not collection_ids:
            return []

        ids = sorted(set(collection_ids))
        params: list[object] = list(ids)
        tenant_clause = ""
        if org_slug is not None:
            tenant_clause = " AND d.org_slug = ?"
            params.append(org_slug)
        sql = _LOAD_SCOPED_SQL.format(
            placeholders=", ".join("?" for _ in ids),
            tenant_clause=tenant_clause,
        )

        async with connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [
            StoredChunk(
                document_id=r["document_id"],
                chunk_index=r["chunk_index"],
                content=r["content"],
                vector=json.loads(r["embedding"]),
            )
            for r in rows
        ]

    async def count_chunks(self, document_id: int) -> int:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM embeddings WHERE document_id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()
        return int(row[0])

    async def get_dimension(self) -> int | None:
        async with connect(self._db_path) as db:
            cursor = await db.execute("SELECT value FROM store_meta WHERE key = ?", (_DIMENSION_KEY,))
            row = await cursor.fetchone()
        return int(row["value"]) if row else None

    def get_provider_name(self) -> str:
        return "sqlite_vector_store"
