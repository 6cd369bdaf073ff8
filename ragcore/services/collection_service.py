"""Collection management: explicit creation and per-agent knowledge bases."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ragcore.models.document import Collection
from ragcore.utils.errors import ConfigurationError

if TYPE_CHECKING:
    from ragcore.interfaces.document_repository import IDocumentRepository

logger = structlog.get_logger(logger_name=__name__)


def agent_collection_name(agent_id: int | str) -> str:
    return f"agent-{agent_id}"


class CollectionService:
    """Creates and lists collections for a tenant."""

    def __init__(self, documents: IDocumentRepository, auto_agent_kb: bool = True) -> None:
        self._documents = documents
        self._auto_agent_kb = auto_agent_kb

    async def create_collection(self, name: str, org_slug: str, description: str = "") -> Collection:
        """Create a collection; returns the existing one if the name is taken in this tenant."""
        name = name.strip()
        if not name:
            raise ValueError("collection name must not be blank")
        return await self._documents.create_collection(name, org_slug, description)

    async def list_collections(self, org_slug: str) -> list[Collection]:
        return await self._documents.list_collections(org_slug)

    async def ensure_agent_collection(self, agent_id: int | str, org_slug: str) -> Collection:
        """Return the agent's ``agent-{id}`` knowledge base, creating it on first use.

        Raises
        ------
        ConfigurationError
            If automatic agent knowledge bases are disabled (``AUTO_AGENT_KB=false``)
            and the collection does not already exist.
        """
        name = agent_collection_name(agent_id)
        existing = await self._documents.get_collection_by_name(name, org_slug)
        if existing is not None:
            return existing
        if not self._auto_agent_kb:
            raise ConfigurationError(
                message=f"Automatic agent knowledge bases are disabled; create {name!r} explicitly",
            )
        collection = await self._documents.create_collection(
            name, org_slug, description=f"Knowledge base for agent {agent_id}"
        )
        logger.info("agent_collection_provisioned", agent_id=str(agent_id), collection_id=collection.id)
        return collection
