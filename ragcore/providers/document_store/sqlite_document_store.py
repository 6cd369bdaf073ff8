"""SQLite-backed document and collection store.

Persists collections and documents (including ingestion status) with
``aiosqlite``.  Status writes can be compare-and-set so two writers cannot
silently overwrite each other's transition.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from ragcore.interfaces.document_repository import IDocumentRepository
from ragcore.models.document import Collection, Document, DocumentStatus
from ragcore.providers.document_store.schema import apply_schema, connect
from ragcore.utils.errors import (
    CollectionNotFoundError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    VectorStoreError,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ragcore.db")

_COLLECTION_COLUMNS = "id, name, description, org_slug, created_at, updated_at"
_DOCUMENT_COLUMNS = (
    "id, name, mime_type, content_ref, collection_id, org_slug, status, "
    "failure_reason, created_at, updated_at"
)

_INSERT_COLLECTION_SQL = """\
INSERT INTO collections (name, org_slug, description)
VALUES (?, ?, ?)
ON CONFLICT(name, org_slug) DO NOTHING;
"""

_INSERT_DOCUMENT_SQL = """\
INSERT INTO documents (name, mime_type, content_ref, collection_id, org_slug, status)
VALUES (?, ?, ?, ?, ?, ?);
"""

_UPDATE_STATUS_SQL = """\
UPDATE documents
SET status         = ?,
    failure_reason = ?,
    updated_at     = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
WHERE id = ?
"""


class SQLiteDocumentStore(IDocumentRepository):
    """SQLite persistence for collections and documents."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the schema if it doesn't exist."""
        await apply_schema(self._db_path)
        logger.info("document_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def create_collection(
        self,
        name: str,
        org_slug: str,
        description: str = "",
    ) -> Collection:
        async with connect(self._db_path) as db:
            cursor = await db.execute(_INSERT_COLLECTION_SQL, (name, org_slug, description))
            created = cursor.rowcount == 1
            await db.commit()
            cursor = await db.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE name = ? AND org_slug = ?",
                (name, org_slug),
            )
            row = await cursor.fetchone()

        if created:
            logger.info("collection_created", collection_id=row["id"], name=name, org_slug=org_slug)
        return _row_to_collection(row)

    async def get_collection(self, collection_id: int) -> Collection | None:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE id = ?",
                (collection_id,),
            )
            row = await cursor.fetchone()
        return _row_to_collection(row) if row else None

    async def get_collection_by_name(self, name: str, org_slug: str) -> Collection | None:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE name = ? AND org_slug = ?",
                (name, org_slug),
            )
            row = await cursor.fetchone()
        return _row_to_collection(row) if row else None

    async def list_collections(self, org_slug: str) -> list[Collection]:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE org_slug = ? ORDER BY id",
                (org_slug,),
            )
            rows = await cursor.fetchall()
        return [_row_to_collection(r) for r in rows]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(
        self,
        name: str,
        mime_type: str,
        content_ref: str,
        org_slug: str,
        collection_id: int | None = None,
        status: DocumentStatus = DocumentStatus.PENDING,
    ) -> Document:
        async with connect(self._db_path) as db:
            try:
                cursor = await db.execute(
                    _INSERT_DOCUMENT_SQL,
                    (name, mime_type, content_ref, collection_id, org_slug, status.value),
                )
            except aiosqlite.IntegrityError as exc:
                raise CollectionNotFoundError(
                    message=f"Collection {collection_id} does not exist",
                    provider_name=self.get_provider_name(),
                ) from exc
            document_id = cursor.lastrowid
            await db.commit()
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()

        logger.info(
            "document_created",
            document_id=document_id,
            name=name,
            collection_id=collection_id,
            org_slug=org_slug,
            status=status.value,
        )
        return _row_to_document(row)

    async def get_document(self, document_id: int) -> Document | None:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def list_documents(self, collection_id: int) -> list[Document]:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE collection_id = ? ORDER BY id",
                (collection_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def count_documents(self, collection_id: int) -> int:
        async with connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM documents WHERE collection_id = ?",
                (collection_id,),
            )
            row = await cursor.fetchone()
        return int(row[0])

    async def update_status(
        self,
        document_id: int,
        status: DocumentStatus,
        expected: DocumentStatus | None = None,
        failure_reason: str | None = None,
    ) -> Document:
        sql = _UPDATE_STATUS_SQL
        params: list[Any] = [status.value, failure_reason, document_id]
        if expected is not None:
            sql += " AND status = ?"
            params.append(expected.value)

        async with connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            updated = cursor.rowcount
            await db.commit()
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()

        if row is None:
            raise DocumentNotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        if updated == 0:
            raise InvalidStatusTransitionError(
                message=(
                    f"Document {document_id} is {row['status']}, "
                    f"expected {expected.value if expected else '?'} before moving to {status.value}"
                ),
                provider_name=self.get_provider_name(),
            )
        return _row_to_document(row)

    async def delete_document(self, document_id: int) -> bool:
        async with connect(self._db_path) as db:
            try:
                cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            except aiosqlite.IntegrityError as exc:
                raise VectorStoreError(
                    message=f"Document {document_id} still has chunk records",
                    provider_name=self.get_provider_name(),
                ) from exc
            deleted = cursor.rowcount > 0
            await db.commit()

        if deleted:
            logger.info("document_deleted", document_id=document_id)
        return deleted

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return "sqlite_documents"


def _row_to_collection(row: aiosqlite.Row) -> Collection:
    return Collection(**dict(row))


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document(**dict(row))
