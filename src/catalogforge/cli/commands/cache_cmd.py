from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from catalogforge.cli.context import CLIContext
from catalogforge.infrastructure.db.repos.chunk_cache_repo import ChunkCacheRepo


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("cache", help="Inspect or clear the chunk invocation cache")
    cache_subparsers = parser.add_subparsers(dest="cache_command", required=True)

    stats_parser = cache_subparsers.add_parser("stats", help="Show cached chunk entries")
    stats_parser.add_argument("--limit", type=int, default=20)
    stats_parser.set_defaults(handler=run_stats)

    clear_parser = cache_subparsers.add_parser("clear", help="Delete every cached chunk entry")
    clear_parser.set_defaults(handler=run_clear)


def run_stats(args: argparse.Namespace, ctx: CLIContext) -> int:
    repo = ChunkCacheRepo(ctx.paths.db_path)
    total = repo.count()
    ctx.console.print(Panel.fit(f"Database: {ctx.paths.db_path}\nEntries: {total}", title="Chunk Cache"))
    if not total:
        return 0

    table = Table(title="Recent Entries")
    table.add_column("Chunk ID")
    table.add_column("Model")
    table.add_column("Content hash")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    for entry in repo.list_entries(limit=args.limit):
        table.add_row(
            entry["chunk_id"],
            entry["model"],
            entry["content_hash"][:16],
            str(entry["size_bytes"]),
            entry["created_at"],
        )
    ctx.console.print(table)
    return 0


def run_clear(args: argparse.Namespace, ctx: CLIContext) -> int:
    removed = ChunkCacheRepo(ctx.paths.db_path).clear()
    ctx.console.print(Panel.fit(f"Removed {removed} cached chunk(s)", title="Chunk Cache"))
    return 0
