"""Command-line access to ingestion and retrieval.

Usage::

    python -m ragcore.cli.ingest collections --org acme
    python -m ragcore.cli.ingest create-collection --org acme --name handbook
    python -m ragcore.cli.ingest file --path ./handbook.pdf --org acme --collection-id 3
    python -m ragcore.cli.ingest status --document-id 12
    python -m ragcore.cli.ingest retry --document-id 12
    python -m ragcore.cli.ingest search --org acme --collection-ids 3 4 --query "parental leave"

Uses the same ``Settings`` (environment / ``.env``) as the API server.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path
from typing import Any

from ragcore.bootstrap import build_components, close_components, initialize_components
from ragcore.config.settings import Settings
from ragcore.utils.errors import RagCoreError
from ragcore.utils.logging import configure_logging

_MIME_OVERRIDES = {
    ".md": "text/markdown",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def _guess_mime_type(path: Path) -> str:
    override = _MIME_OVERRIDES.get(path.suffix.lower())
    if override:
        return override
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


async def _handle_file(args: argparse.Namespace, components: dict[str, Any]) -> int:
    path = Path(args.path)
    if not path.is_file():
        print(f"Error: not a file: {path}", file=sys.stderr)
        return 1

    mime_type = args.mime or _guess_mime_type(path)
    print(f"Ingesting {path.name} ({mime_type}) into collection {args.collection_id}")
    receipt = await components["orchestrator"].ingest(
        name=path.name,
        data=path.read_bytes(),
        mime_type=mime_type,
        collection_id=args.collection_id,
        org_slug=args.org,
    )
    document = await components["orchestrator"].get_document(receipt.document_id)
    print(f"  Document ID: {receipt.document_id}")
    print(f"  Status:      {receipt.status.value}")
    if document.failure_reason:
        print(f"  Reason:      {document.failure_reason}")
    chunks = await components["vector_store"].count_chunks(receipt.document_id)
    print(f"  Chunks:      {chunks}")
    return 0 if receipt.status.value != "failed" else 2


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    document = await components["orchestrator"].get_document(args.document_id)
    print(f"{document.id}  {document.name}  {document.status.value}")
    if document.failure_reason:
        print(f"  Reason: {document.failure_reason}")
    return 0


async def _handle_retry(args: argparse.Namespace, components: dict[str, Any]) -> int:
    receipt = await components["orchestrator"].retry_document(args.document_id)
    print(f"Document {receipt.document_id}: {receipt.status.value}")
    return 0 if receipt.status.value == "completed" else 2


async def _handle_search(args: argparse.Namespace, components: dict[str, Any]) -> int:
    hits = await components["retrieval_service"].search(
        args.query, args.collection_ids, top_k=args.top_k, org_slug=args.org
    )
    if not hits:
        print("No results.")
        return 0
    for rank, hit in enumerate(hits, start=1):
        preview = hit.content.replace("\n", " ")[:160]
        print(f"{rank:>2}. [{hit.score:.4f}] doc {hit.document_id} #{hit.chunk_index}: {preview}")
    return 0


async def _handle_collections(args: argparse.Namespace, components: dict[str, Any]) -> int:
    collections = await components["collection_service"].list_collections(args.org)
    if not collections:
        print(f"No collections for {args.org}.")
        return 0
    for collection in collections:
        count = await components["document_store"].count_documents(collection.id)
        print(f"{collection.id:>4}  {collection.name}  ({count} documents)")
    return 0


async def _handle_create_collection(args: argparse.Namespace, components: dict[str, Any]) -> int:
    collection = await components["collection_service"].create_collection(
        args.name, args.org, args.description
    )
    print(f"Collection {collection.id}: {collection.name}")
    return 0


_HANDLERS = {
    "file": _handle_file,
    "status": _handle_status,
    "retry": _handle_retry,
    "search": _handle_search,
    "collections": _handle_collections,
    "create-collection": _handle_create_collection,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ragcore-ingest",
        description="Ingest documents and query collections.",
    )
    subparsers = parser.add_subparsers(dest="command")

    file_parser = subparsers.add_parser("file", help="Upload and ingest a local file")
    file_parser.add_argument("--path", required=True, help="File to ingest")
    file_parser.add_argument("--org", required=True, help="Organization slug")
    file_parser.add_argument("--collection-id", type=int, default=None, help="Target collection")
    file_parser.add_argument("--mime", default=None, help="MIME type (guessed from the extension otherwise)")

    status_parser = subparsers.add_parser("status", help="Show a document's ingestion status")
    status_parser.add_argument("--document-id", type=int, required=True)

    retry_parser = subparsers.add_parser("retry", help="Retry a failed document")
    retry_parser.add_argument("--document-id", type=int, required=True)

    search_parser = subparsers.add_parser("search", help="Similarity search over collections")
    search_parser.add_argument("--query", required=True)
    search_parser.add_argument("--collection-ids", type=int, nargs="+", required=True)
    search_parser.add_argument("--org", default=None, help="Restrict results to this organization")
    search_parser.add_argument("--top-k", type=int, default=None)

    collections_parser = subparsers.add_parser("collections", help="List an organization's collections")
    collections_parser.add_argument("--org", required=True)

    create_parser = subparsers.add_parser("create-collection", help="Create a collection")
    create_parser.add_argument("--org", required=True)
    create_parser.add_argument("--name", required=True)
    create_parser.add_argument("--description", default="")

    return parser


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    components = build_components(app_settings)
    try:
        await initialize_components(components)
        return await _HANDLERS[args.command](args, components)
    except RagCoreError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await close_components(components)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse the subcommand, load settings, dispatch."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level)
    sys.exit(asyncio.run(_run(args, app_settings)))


if __name__ == "__main__":
    main()
