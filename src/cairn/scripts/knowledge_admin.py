"""CLI for inspecting and editing the Cairn knowledge store."""

from __future__ import annotations

import argparse
import json
import sys

from cairn.app import create_app
from cairn.errors import StoreError
from cairn.service import KnowledgeService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage Cairn knowledge items")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("list", help="List knowledge items, newest first")

    show = subparsers.add_parser("show", help="Print one knowledge item as JSON")
    show.add_argument("item_id")

    upsert = subparsers.add_parser("upsert", help="Create or overwrite the item for a category")
    upsert.add_argument("category")
    upsert.add_argument("content")
    upsert.add_argument("--tags", nargs="*", default=None, help="Tags to attach (default: none)")

    delete = subparsers.add_parser("delete", help="Delete a knowledge item by id")
    delete.add_argument("item_id")

    subparsers.add_parser("stats", help="Print item and tag counts")
    return parser


def _run_serve(host: str, port: int) -> int:  # pragma: no cover - blocks until interrupted
    import uvicorn

    uvicorn.run("cairn.app:create_app", host=host, port=port, factory=True)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return _run_serve(args.host, args.port)

    app = create_app()
    service: KnowledgeService = app.state.services.knowledge_service

    try:
        if args.command == "list":
            for item in service.get_all():
                tags = ", ".join(item.tags) or "-"
                print(f"{item.id}\t{item.category}\t[{tags}]\t{item.last_updated}")
        elif args.command == "show":
            item = service.get_by_id(args.item_id)
            if item is None:
                print(f"No knowledge item with id {args.item_id}", file=sys.stderr)
                return 1
            print(json.dumps(item.to_dict(include_embedding=False), indent=2, ensure_ascii=False))
        elif args.command == "upsert":
            outcome = service.upsert_with_outcome(args.category, args.content, args.tags)
            action = "Created" if outcome.created else "Updated"
            print(f"{action} {outcome.item.id} ({outcome.item.category})")
            if outcome.embedding.error is not None:
                print(f"warning: saved without embedding: {outcome.embedding.error}", file=sys.stderr)
        elif args.command == "delete":
            service.delete(args.item_id)
            print(f"Deleted {args.item_id}")
        elif args.command == "stats":
            print(json.dumps(service.stats(), indent=2))
    except StoreError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
