"""Terminal client that reuses the in-process search and ingestion logic."""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Iterable

from catalog_search.cache import get_cache
from catalog_search.config import settings
from catalog_search.es_client import get_client, get_product_store
from catalog_search.indexing import ensure_index
from catalog_search.ingest import IngestOk, ingest_file
from catalog_search.models import SearchResponse
from catalog_search.search import SearchEngine
from catalog_search.store import ProductStore
from catalog_search.suggest import SuggestionEngine

GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


def _store() -> ProductStore:
    return get_product_store()


async def perform_query(query: str, page: int, limit: int) -> SearchResponse:
    return await SearchEngine(_store(), get_cache()).search(query, page, limit)


async def perform_suggest(query: str) -> list[str]:
    return await SuggestionEngine(_store(), get_cache()).suggest(query)


async def perform_ingest(path: Path) -> int:
    await ensure_index(get_client())
    outcome = await ingest_file(path, _store(), remove=False)
    if isinstance(outcome, IngestOk):
        print(f"Indexed {outcome.total_indexed} products from {path}")
        return 0
    print(f"{RED}{outcome.error.detail}{RESET}")
    return 1


def pretty_print_response(query: str, payload: SearchResponse) -> None:
    color = GREEN if payload.tookMs < 200 else RED
    eta_label = f"{color}{payload.tookMs:.1f} ms{RESET}"
    print(
        f"Query: {query} | page {payload.page}/{payload.totalPages} | "
        f"total: {payload.totalItems} | took: {eta_label} | cached: {payload.cached}"
    )
    for idx, item in enumerate(payload.items, start=1):
        score_repr = f"{item.score:.2f}" if item.score is not None else "-"
        print(f"  {idx:02d}. score={score_repr} | {item.brand} | {item.sku} | {item.title}")


def run_one(query: str, args: argparse.Namespace) -> None:
    if args.suggest:
        suggestions = asyncio.run(perform_suggest(query))
        print(f"Suggestions for {query!r}: " + (", ".join(suggestions) or "-"))
        return
    response = asyncio.run(perform_query(query, args.page, args.limit))
    pretty_print_response(query, response)


def interactive_shell(args: argparse.Namespace) -> None:
    print("Interactive product search. Type 'exit' to quit.")
    while True:
        try:
            query = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if not query:
            continue
        if query.lower() in {"exit", "quit"}:
            return
        run_one(query, args)


def batch_mode(file_path: Path, args: argparse.Namespace) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            query = line.strip()
            if not query:
                continue
            run_one(query, args)


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the catalog search service")
    parser.add_argument("query", nargs="?", help="Query string. If omitted, starts REPL mode.")
    parser.add_argument("--batch", type=Path, help="File with queries to execute line by line")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--suggest", action="store_true", help="Print autocomplete suggestions instead of results")
    parser.add_argument("--ingest", type=Path, help="Load a product CSV into the index and exit")
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.getLevelName(settings.log_level.upper()), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if args.ingest:
        return asyncio.run(perform_ingest(args.ingest))
    if args.batch:
        batch_mode(args.batch, args)
        return 0
    if args.query:
        run_one(args.query, args)
        return 0
    interactive_shell(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
