"""Forge storage proxy adapter.

Uploads go to ``{forge_api_url}/v1/storage/upload?path={key}`` as a
multipart form with a bearer key; the JSON answer carries the public
``url`` that becomes the document's content reference.
"""

from __future__ import annotations

import httpx
import structlog

from ragcore.config.settings import Settings
from ragcore.interfaces.content_storage import IContentStorage
from ragcore.utils.errors import ConfigurationError, StorageUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "forge_storage"


class ForgeContentStorage(IContentStorage):
    """Stores document bytes through the Forge storage proxy."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        if not settings.forge_api_url or not settings.forge_api_key:
            raise ConfigurationError(
                message="FORGE_API_URL and FORGE_API_KEY are required for forge storage",
                provider_name=_PROVIDER_NAME,
            )
        self._base_url = settings.forge_api_url.rstrip("/")
        self._api_key = settings.forge_api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.storage_timeout_seconds)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        normalized = key.lstrip("/")
        file_name = normalized.rsplit("/", 1)[-1] or "file"
        try:
            response = await self._http.post(
                f"{self._base_url}/v1/storage/upload",
                params={"path": normalized},
                files={"file": (file_name, data, mime_type)},
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as exc:
            raise StorageUnavailableError(
                message=f"Storage upload failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        is_json = "application/json" in response.headers.get("content-type", "")
        if not response.is_success:
            detail = "Storage returned non-JSON response"
            if is_json:
                detail = _json_field(response, "message", "error") or "Storage upload failed"
            raise StorageUnavailableError(
                message=f"Storage upload {response.status_code}: {detail}",
                provider_name=_PROVIDER_NAME,
            )

        url = _json_field(response, "url") if is_json else None
        if not url:
            raise StorageUnavailableError(
                message="Storage upload response is missing the url field",
                provider_name=_PROVIDER_NAME,
            )

        logger.info("content_stored", key=normalized, size=len(data), mime_type=mime_type)
        return str(url)

    async def get(self, content_ref: str) -> bytes:
        """Download stored bytes.

        *content_ref* is either the URL returned by :meth:`put` or a bare
        storage key, which is first resolved through ``v1/storage/downloadUrl``.
        """
        url = content_ref
        if not content_ref.startswith(("http://", "https://")):
            url = await self._download_url(content_ref.lstrip("/"))
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageUnavailableError(
                message=f"Storage download failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        return response.content

    async def _download_url(self, key: str) -> str:
        try:
            response = await self._http.get(
                f"{self._base_url}/v1/storage/downloadUrl",
                params={"path": key},
                headers=self._auth_headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageUnavailableError(
                message=f"Storage download URL lookup failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        url = _json_field(response, "url")
        if not url:
            raise StorageUnavailableError(
                message="Storage downloadUrl response is missing the url field",
                provider_name=_PROVIDER_NAME,
            )
        return url

    async def health_check(self) -> bool:
        try:
            response = await self._http.get(f"{self._base_url}/health", headers=self._auth_headers())
        except httpx.HTTPError as exc:
            logger.warning("storage_health_check_failed", error=str(exc))
            return False
        return response.is_success

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def _json_field(response: httpx.Response, *names: str) -> str | None:
    """Return the first non-empty named field of a JSON object body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for name in names:
        if body.get(name):
            return str(body[name])
    return None
