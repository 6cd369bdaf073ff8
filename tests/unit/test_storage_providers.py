"""Unit tests for content storage: local filesystem and Forge proxy."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from ragcore.config.settings import Settings
from ragcore.providers.storage.forge_storage_provider import ForgeContentStorage
from ragcore.providers.storage.local_storage_provider import LocalContentStorage
from ragcore.utils.errors import ConfigurationError, StorageUnavailableError


class TestLocalContentStorage:
    @pytest.fixture
    def storage(self, tmp_path: Path) -> LocalContentStorage:
        return LocalContentStorage(upload_dir=tmp_path / "uploads")

    @pytest.mark.asyncio
    async def test_put_then_get(self, storage: LocalContentStorage, tmp_path: Path) -> None:
        ref = await storage.put("orgs/acme/uploads/1-notes.txt", b"hello", "text/plain")

        assert ref == "/uploads/orgs/acme/uploads/1-notes.txt"
        assert (tmp_path / "uploads" / "orgs" / "acme" / "uploads" / "1-notes.txt").read_bytes() == b"hello"
        assert await storage.get(ref) == b"hello"

    @pytest.mark.asyncio
    async def test_no_partial_file_left(self, storage: LocalContentStorage, tmp_path: Path) -> None:
        await storage.put("a/b.txt", b"data", "text/plain")
        assert not list((tmp_path / "uploads").rglob("*.part"))

    @pytest.mark.asyncio
    async def test_concurrent_puts_to_one_key_do_not_clash(
        self, storage: LocalContentStorage, tmp_path: Path
    ) -> None:
        payloads = [bytes([i]) * 4096 for i in range(1, 9)]

        await asyncio.gather(*(storage.put("orgs/acme/uploads/1-a.txt", p, "text/plain") for p in payloads))

        stored = (tmp_path / "uploads" / "orgs" / "acme" / "uploads" / "1-a.txt").read_bytes()
        assert stored in payloads
        assert not list((tmp_path / "uploads").rglob("*.part"))

    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self, storage: LocalContentStorage) -> None:
        with pytest.raises(StorageUnavailableError, match="Invalid storage key"):
            await storage.put("../escape.txt", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_get_missing_file(self, storage: LocalContentStorage) -> None:
        with pytest.raises(StorageUnavailableError):
            await storage.get("/uploads/nope.txt")

    @pytest.mark.asyncio
    async def test_get_foreign_reference(self, storage: LocalContentStorage) -> None:
        with pytest.raises(StorageUnavailableError, match="Not a local content reference"):
            await storage.get("https://cdn.example.com/file.txt")

    @pytest.mark.asyncio
    async def test_health_check_creates_root(self, storage: LocalContentStorage, tmp_path: Path) -> None:
        assert await storage.health_check() is True
        assert (tmp_path / "uploads").is_dir()


def _forge_settings(**overrides) -> Settings:
    values = {
        "forge_api_url": "https://forge.example.com",
        "forge_api_key": "forge-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _forge(handler) -> ForgeContentStorage:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ForgeContentStorage(_forge_settings(), http_client=client)


class TestForgeContentStorage:
    def test_requires_credentials(self) -> None:
        with pytest.raises(ConfigurationError):
            ForgeContentStorage(_forge_settings(forge_api_key=""))

    @pytest.mark.asyncio
    async def test_put_returns_url(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["query"] = request.url.params.get("path")
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content
            return httpx.Response(200, json={"url": "https://cdn.example.com/orgs/acme/doc.txt"})

        storage = _forge(handler)
        ref = await storage.put("/orgs/acme/doc.txt", b"payload", "text/plain")

        assert ref == "https://cdn.example.com/orgs/acme/doc.txt"
        assert seen["path"] == "/v1/storage/upload"
        assert seen["query"] == "orgs/acme/doc.txt"
        assert seen["auth"] == "Bearer forge-key"
        assert b"payload" in seen["body"]

    @pytest.mark.asyncio
    async def test_put_error_status(self) -> None:
        storage = _forge(lambda request: httpx.Response(500, json={"message": "disk full"}))
        with pytest.raises(StorageUnavailableError, match="500: disk full"):
            await storage.put("k", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_put_missing_url(self) -> None:
        storage = _forge(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(StorageUnavailableError, match="missing the url"):
            await storage.put("k", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_put_invalid_json_body(self) -> None:
        storage = _forge(
            lambda request: httpx.Response(200, content=b"not json", headers={"content-type": "application/json"})
        )
        with pytest.raises(StorageUnavailableError, match="missing the url"):
            await storage.put("k", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_get_downloads_reference(self) -> None:
        storage = _forge(lambda request: httpx.Response(200, content=b"file bytes"))
        assert await storage.get("https://cdn.example.com/doc.txt") == b"file bytes"

    @pytest.mark.asyncio
    async def test_get_resolves_bare_key(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            if request.url.path == "/v1/storage/downloadUrl":
                assert request.url.params.get("path") == "orgs/acme/uploads/1-a.txt"
                return httpx.Response(200, json={"url": "https://cdn.example.com/signed/a.txt"})
            return httpx.Response(200, content=b"resolved bytes")

        storage = _forge(handler)

        assert await storage.get("/orgs/acme/uploads/1-a.txt") == b"resolved bytes"
        assert requested[-1] == "https://cdn.example.com/signed/a.txt"

    @pytest.mark.asyncio
    async def test_get_failure(self) -> None:
        storage = _forge(lambda request: httpx.Response(404))
        with pytest.raises(StorageUnavailableError):
            await storage.get("https://cdn.example.com/doc.txt")

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        assert await _forge(lambda request: httpx.Response(200)).health_check() is True
        assert await _forge(lambda request: httpx.Response(503)).health_check() is False
