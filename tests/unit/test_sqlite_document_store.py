"""Unit tests for SQLiteDocumentStore with a temporary database."""

from __future__ import annotations

from pathlib import Path

import pytest

from ragcore.models.document import Collection, DocumentStatus
from ragcore.models.rag import ChunkRecord
from ragcore.providers.document_store.sqlite_document_store import SQLiteDocumentStore
from ragcore.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from ragcore.utils.errors import (
    CollectionNotFoundError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    VectorStoreError,
)


class TestCollections:
    @pytest.mark.asyncio
    async def test_initialize_creates_db(self, db_path: Path) -> None:
        store = SQLiteDocumentStore(db_path=db_path)
        await store.initialize()
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_create_and_get(self, document_store: SQLiteDocumentStore) -> None:
        created = await document_store.create_collection("policies", "acme", "HR policies")
        fetched = await document_store.get_collection(created.id)
        assert fetched == created
        assert fetched.org_slug == "acme"
        assert fetched.description == "HR policies"

    @pytest.mark.asyncio
    async def test_create_is_idempotent_per_tenant(self, document_store: SQLiteDocumentStore) -> None:
        first = await document_store.create_collection("policies", "acme")
        second = await document_store.create_collection("policies", "acme")
        other_tenant = await document_store.create_collection("policies", "globex")
        assert first.id == second.id
        assert other_tenant.id != first.id

    @pytest.mark.asyncio
    async def test_list_is_tenant_scoped(self, document_store: SQLiteDocumentStore) -> None:
        await document_store.create_collection("a", "acme")
        await document_store.create_collection("b", "acme")
        await document_store.create_collection("c", "globex")
        names = [c.name for c in await document_store.list_collections("acme")]
        assert names == ["a", "b"]

    @pytest.mark.asyncio
    async def test_get_by_name(self, document_store: SQLiteDocumentStore) -> None:
        created = await document_store.create_collection("agent-7", "acme")
        assert await document_store.get_collection_by_name("agent-7", "acme") == created
        assert await document_store.get_collection_by_name("agent-7", "globex") is None

    @pytest.mark.asyncio
    async def test_missing_collection(self, document_store: SQLiteDocumentStore) -> None:
        assert await document_store.get_collection(999) is None


class TestDocuments:
    @pytest.mark.asyncio
    async def test_create_document_defaults_to_pending(
        self, document_store: SQLiteDocumentStore, collection: Collection
    ) -> None:
        document = await document_store.create_document(
            name="handbook.pdf",
            mime_type="application/pdf",
            content_ref="/uploads/x",
            org_slug="acme",
            collection_id=collection.id,
        )
        assert document.status is DocumentStatus.PENDING
        assert document.failure_reason is None
        assert document.collection_id == collection.id
        assert await document_store.count_documents(collection.id) == 1

    @pytest.mark.asyncio
    async def test_create_document_unknown_collection(self, document_store: SQLiteDocumentStore) -> None:
        with pytest.raises(CollectionNotFoundError):
            await document_store.create_document("a.txt", "text/plain", "/uploads/a", "acme", collection_id=42)

    @pytest.mark.asyncio
    async def test_list_documents(self, document_store: SQLiteDocumentStore, collection: Collection) -> None:
        for name in ("one.txt", "two.txt"):
            await document_store.create_document(name, "text/plain", f"/uploads/{name}", "acme", collection.id)
        names = [d.name for d in await document_store.list_documents(collection.id)]
        assert names == ["one.txt", "two.txt"]

    @pytest.mark.asyncio
    async def test_update_status_compare_and_set(self, document_store: SQLiteDocumentStore) -> None:
        document = await document_store.create_document("a.txt", "text/plain", "/uploads/a", "acme")

        updated = await document_store.update_status(
            document.id, DocumentStatus.PROCESSING, expected=DocumentStatus.PENDING
        )
        assert updated.status is DocumentStatus.PROCESSING

        with pytest.raises(InvalidStatusTransitionError, match="is processing"):
            await document_store.update_status(
                document.id, DocumentStatus.PROCESSING, expected=DocumentStatus.PENDING
            )

    @pytest.mark.asyncio
    async def test_failure_reason_set_and_cleared(self, document_store: SQLiteDocumentStore) -> None:
        document = await document_store.create_document("a.txt", "text/plain", "/uploads/a", "acme")
        failed = await document_store.update_status(document.id, DocumentStatus.FAILED, failure_reason="boom")
        assert failed.failure_reason == "boom"
        retried = await document_store.update_status(document.id, DocumentStatus.PROCESSING)
        assert retried.failure_reason is None

    @pytest.mark.asyncio
    async def test_update_missing_document(self, document_store: SQLiteDocumentStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            await document_store.update_status(404, DocumentStatus.PROCESSING)

    @pytest.mark.asyncio
    async def test_delete_document(self, document_store: SQLiteDocumentStore) -> None:
        document = await document_store.create_document("a.txt", "text/plain", "/uploads/a", "acme")
        assert await document_store.delete_document(document.id) is True
        assert await document_store.get_document(document.id) is None
        assert await document_store.delete_document(document.id) is False

    @pytest.mark.asyncio
    async def test_delete_refused_while_chunks_exist(
        self, document_store: SQLiteDocumentStore, vector_store: SQLiteVectorStore
    ) -> None:
        document = await document_store.create_document("a.txt", "text/plain", "/uploads/a", "acme")
        await vector_store.append_chunks(document.id, [ChunkRecord(chunk_index=0, content="x", vector=[1.0])])

        with pytest.raises(VectorStoreError):
            await document_store.delete_document(document.id)
        assert await document_store.get_document(document.id) is not None
