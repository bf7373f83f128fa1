from __future__ import annotations

import argparse

from rich.table import Table

from catalogforge.cli.context import CLIContext
from catalogforge.cli.pipeline_options import add_page_input_args, doc_id_from_args, load_pages
from catalogforge.infrastructure.chunking.page_chunker import PageChunker


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("chunks", help="Inspect how a document is chunked")
    chunks_subparsers = parser.add_subparsers(dest="chunks_command", required=True)

    plan_parser = chunks_subparsers.add_parser("plan", help="Show chunk ids, page ranges and content hashes")
    add_page_input_args(plan_parser)
    plan_parser.add_argument("--pages-per-chunk", type=int, default=None)
    plan_parser.set_defaults(handler=run_plan)


def run_plan(args: argparse.Namespace, ctx: CLIContext) -> int:
    settings = ctx.settings.with_overrides(pages_per_chunk=args.pages_per_chunk)
    pages = load_pages(args.pages)
    chunks = PageChunker(pages_per_chunk=settings.pages_per_chunk).chunk_pages(pages, doc_id=doc_id_from_args(args))

    table = Table(title=f"Chunk Plan ({len(pages)} pages, {settings.pages_per_chunk} per chunk)")
    table.add_column("Chunk ID")
    table.add_column("Pages")
    table.add_column("Content hash")
    for chunk in chunks:
        table.add_row(chunk.chunk_id, f"{chunk.page_start}-{chunk.page_end}", chunk.content_hash[:16])
    ctx.console.print(table)
    return 0
