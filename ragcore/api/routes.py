"""FastAPI route handlers for the ragcore REST API.

All endpoints live under ``/api/v1``.  Services are read from
``app.state`` through small ``_get_*`` helpers wrapped in ``Annotated``
dependency aliases, so tests can build an app with fake components.
Application errors propagate to :class:`ErrorHandlingMiddleware`, which
picks the status code.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile

from ragcore.api.schemas import (
    CollectionListResponse,
    CollectionResponse,
    CreateCollectionRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    IngestResponse,
    SearchHitResponse,
    SearchRequest,
    SearchResponse,
)
from ragcore.config.settings import Settings
from ragcore.models.document import Collection, Document
from ragcore.services.collection_service import CollectionService
from ragcore.services.health_service import HealthService
from ragcore.services.ingestion.orchestrator import IngestionOrchestrator
from ragcore.services.retrieval.retrieval_service import RetrievalService
from ragcore.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_UPLOAD_CHUNK_SIZE = 64 * 1024


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _get_orchestrator(request: Request) -> IngestionOrchestrator:
    """Return the ingestion orchestrator from application state."""
    return request.app.state.orchestrator


def _get_retrieval(request: Request) -> RetrievalService:
    """Return the retrieval service from application state."""
    return request.app.state.retrieval_service


def _get_collections(request: Request) -> CollectionService:
    return request.app.state.collection_service


def _get_health(request: Request) -> HealthService:
    return request.app.state.health_service


SettingsDep = Annotated[Settings, Depends(_get_settings)]
OrchestratorDep = Annotated[IngestionOrchestrator, Depends(_get_orchestrator)]
RetrievalDep = Annotated[RetrievalService, Depends(_get_retrieval)]
CollectionsDep = Annotated[CollectionService, Depends(_get_collections)]
HealthDep = Annotated[HealthService, Depends(_get_health)]


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        name=document.name,
        mime_type=document.mime_type,
        collection_id=document.collection_id,
        org_slug=document.org_slug,
        status=document.status,
        failure_reason=document.failure_reason,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _collection_response(collection: Collection) -> CollectionResponse:
    return CollectionResponse(
        id=collection.id,
        name=collection.name,
        description=collection.description,
        org_slug=collection.org_slug,
        created_at=collection.created_at,
    )


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    """Read the upload in chunks and reject it as soon as it exceeds *max_bytes*."""
    chunks: list[bytes] = []
    total_size = 0
    while True:
        chunk = await file.read(_UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: maximum is {max_bytes // (1024 * 1024)} MB.",
            )
        chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=IngestResponse,
    status_code=201,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Upload a document into a collection and ingest it",
)
async def upload_document(
    file: UploadFile,
    orchestrator: OrchestratorDep,
    app_settings: SettingsDep,
    org_slug: Annotated[str, Form(min_length=1)],
    collection_id: Annotated[int | None, Form()] = None,
) -> IngestResponse:
    """Store the file and ingest it (inline) or enqueue it (queue mode).

    The response status is ``completed``/``failed`` for inline ingestion
    and ``queued`` when a worker will pick the document up.
    An empty file still gets a document record; it ends ``failed`` with an
    ``empty_extraction`` reason like any other text-less upload.
    """
    data = await _read_upload(file, app_settings.upload_max_bytes)
    receipt = await orchestrator.ingest(
        name=file.filename or "upload",
        data=data,
        mime_type=file.content_type or "application/octet-stream",
        collection_id=collection_id,
        org_slug=org_slug,
    )
    return IngestResponse(document_id=receipt.document_id, status=receipt.status)


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_document(document_id: int, orchestrator: OrchestratorDep) -> DocumentResponse:
    """Return a document's current status and failure reason."""
    return _document_response(await orchestrator.get_document(document_id))


@router.post(
    "/documents/{document_id}/retry",
    response_model=IngestResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def retry_document(document_id: int, orchestrator: OrchestratorDep) -> IngestResponse:
    """Re-run ingestion for a failed (or stuck queued) document."""
    receipt = await orchestrator.retry_document(document_id)
    return IngestResponse(document_id=receipt.document_id, status=receipt.status)


@router.delete(
    "/documents/{document_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
)
async def delete_document(document_id: int, orchestrator: OrchestratorDep) -> None:
    """Delete a document and its chunks."""
    if not await orchestrator.delete_document(document_id):
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


@router.post("/collections", response_model=CollectionResponse, status_code=201)
async def create_collection(body: CreateCollectionRequest, collections: CollectionsDep) -> CollectionResponse:
    try:
        collection = await collections.create_collection(body.name, body.org_slug, body.description)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _collection_response(collection)


@router.get("/collections", response_model=CollectionListResponse)
async def list_collections(org_slug: str, collections: CollectionsDep) -> CollectionListResponse:
    items = await collections.list_collections(org_slug)
    return CollectionListResponse(
        collections=[_collection_response(c) for c in items],
        total=len(items),
    )


@router.post(
    "/agents/{agent_id}/collection",
    response_model=CollectionResponse,
    responses={409: {"model": ErrorResponse}},
    summary="Return (and create on first use) an agent's knowledge base collection",
)
async def ensure_agent_collection(
    agent_id: str,
    org_slug: str,
    collections: CollectionsDep,
) -> CollectionResponse:
    return _collection_response(await collections.ensure_agent_collection(agent_id, org_slug))


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def search(body: SearchRequest, retrieval: RetrievalDep) -> SearchResponse:
    """Rank the chunks of the given collections against the query."""
    hits = await retrieval.search(
        body.query,
        body.collection_ids,
        top_k=body.top_k,
        org_slug=body.org_slug,
    )
    return SearchResponse(
        results=[
            SearchHitResponse(
                content=hit.content,
                score=hit.score,
                document_id=hit.document_id,
                chunk_index=hit.chunk_index,
            )
            for hit in hits
        ],
        total=len(hits),
        context=retrieval.build_context(hits) if body.include_context else None,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(health_service: HealthDep) -> HealthResponse:
    report = await health_service.check()
    if not report["ok"]:
        logger.warning("health_degraded", report={k: v for k, v in report.items() if k != "env"})
    return HealthResponse(**report)
