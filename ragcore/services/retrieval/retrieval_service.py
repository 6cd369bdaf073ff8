"""Retrieval: query -> embedding -> scoped candidates -> ranked chunks.

The chat layer calls :meth:`RetrievalService.search` with the collections
the current agent may read, then :meth:`RetrievalService.build_context` to
turn the hits into a prompt block.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from ragcore.models.rag import SearchHit
from ragcore.services.retrieval.similarity import rank

if TYPE_CHECKING:
    from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
    from ragcore.services.ingestion.embedding_client import EmbeddingClient

logger = structlog.get_logger(logger_name=__name__)

_CONTEXT_PREAMBLE = "Here are relevant documents that may help answer the question:"
_CONTEXT_FOOTER = "Please use the above documents to inform your response."


class RetrievalService:
    """Exact similarity search over the chunks of selected collections."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_store: IVectorStoreProvider,
        default_top_k: int = 5,
    ) -> None:
        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._default_top_k = default_top_k

    async def search(
        self,
        query: str,
        collection_ids: list[int],
        top_k: int | None = None,
        org_slug: str | None = None,
    ) -> list[SearchHit]:
        """Return the chunks most similar to *query* within *collection_ids*.

        Parameters
        ----------
        query:
            Free-text query.  Blank queries return no results.
        collection_ids:
            Collections the caller may read.  Empty scope returns no results
            and never calls the embedding provider.
        top_k:
            Maximum results (defaults to the configured ``rag_top_k``).
        org_slug:
            When given, chunks of other tenants are excluded even if a
            collection id matches.

        Raises
        ------
        ragcore.utils.errors.EmbeddingProviderError
            If the query cannot be embedded.
        """
        k = self._default_top_k if top_k is None else top_k
        if not collection_ids or not query.strip() or k <= 0:
            return []

        start = time.monotonic()
        query_vector = await self._embedding_client.embed(query)
        chunks = await self._vector_store.load_chunks_for_collections(collection_ids, org_slug=org_slug)
        ranked = rank(query_vector, [(chunk, chunk.vector) for chunk in chunks], k)

        hits = [
            SearchHit(
                content=chunk.content,
                score=score,
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
            )
            for chunk, score in ranked
        ]
        logger.info(
            "search_complete",
            collections=len(collection_ids),
            candidates=len(chunks),
            results=len(hits),
            top_score=hits[0].score if hits else None,
            elapsed_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return hits

    @staticmethod
    def build_context(hits: list[SearchHit]) -> str:
        """Format hits as numbered ``[Document i]`` blocks for an LLM prompt.

        Returns an empty string when there are no hits.
        """
        if not hits:
            return ""
        blocks = "\n\n".join(f"[Document {i}]\n{hit.content}" for i, hit in enumerate(hits, start=1))
        return f"{_CONTEXT_PREAMBLE}\n\n{blocks}\n\n{_CONTEXT_FOOTER}"
