from __future__ import annotations

import argparse
import json
import logging

from rich.panel import Panel
from rich.table import Table

from catalogforge.application.services.chunk_pipeline_service import ChunkedExtractionService
from catalogforge.application.services.critique_service import CritiqueService
from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.application.services.fallback_service import FallbackSelector
from catalogforge.application.services.invocation_service import LLMInvoker
from catalogforge.application.services.window_orchestrator import WindowedOrchestrator
from catalogforge.cli.context import CLIContext
from catalogforge.cli.pipeline_options import (
    add_extraction_args,
    add_llm_args,
    add_page_input_args,
    add_window_args,
    doc_id_from_args,
    extraction_options_from_args,
    load_pages,
    settings_from_args,
)
from catalogforge.core.config import PipelineSettings
from catalogforge.core.errors import ConfigurationError
from catalogforge.core.files import write_text_atomic
from catalogforge.domain.models.run import STATUS_ERROR, STATUS_OK, STATUS_PARTIAL, DocumentResult
from catalogforge.domain.validation import validate_groups
from catalogforge.infrastructure.artifacts.store import ArtifactStore
from catalogforge.infrastructure.chunking.page_chunker import PageChunker
from catalogforge.infrastructure.db.repos.chunk_cache_repo import ChunkCacheRepo
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry
from catalogforge.infrastructure.llm.client import CompletionClient, build_completion_client

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("extract", help="Extract a priced catalog from a page model")
    extract_subparsers = parser.add_subparsers(dest="extract_command", required=True)

    chunked_parser = extract_subparsers.add_parser(
        "chunked",
        help="Chunk the document and extract each chunk with the LLM, falling back to rules",
    )
    add_page_input_args(chunked_parser)
    add_llm_args(chunked_parser)
    add_extraction_args(chunked_parser)
    chunked_parser.set_defaults(handler=run_chunked)

    windowed_parser = extract_subparsers.add_parser(
        "windowed",
        help="Extract window by window with critique and a bounded repair loop",
    )
    add_page_input_args(windowed_parser)
    add_llm_args(windowed_parser)
    add_window_args(windowed_parser)
    add_extraction_args(windowed_parser)
    windowed_parser.set_defaults(handler=run_windowed)

    deterministic_parser = extract_subparsers.add_parser(
        "deterministic",
        help="Run only the rule-based extractor (patterns, then price-anchored recovery)",
    )
    add_page_input_args(deterministic_parser)
    add_extraction_args(deterministic_parser)
    deterministic_parser.set_defaults(handler=run_deterministic)


def _optional_client(provider: str) -> CompletionClient | None:
    """A completion client, or None when the provider cannot be set up (rules take over)."""
    try:
        return build_completion_client(provider)
    except ConfigurationError as exc:
        logger.warning("Completion provider '%s' unavailable; continuing without it: %s", provider, exc)
        return None


def _build_extractor(settings: PipelineSettings) -> DeterministicExtractor:
    return DeterministicExtractor(PatternRegistry.load(settings.patterns_dir))


def _build_chunked(
    args: argparse.Namespace,
    ctx: CLIContext,
    settings: PipelineSettings,
    extractor: DeterministicExtractor,
) -> ChunkedExtractionService:
    invoker = LLMInvoker(
        _optional_client(settings.llm_provider),
        model=settings.llm_model,
        cost_per_1k_tokens=settings.cost_per_1k_tokens,
        max_attempts=settings.max_attempts,
        retry_delay_seconds=settings.retry_delay_seconds,
        request_timeout_seconds=settings.request_timeout_seconds,
        cache=None if args.no_cache else ChunkCacheRepo(ctx.paths.db_path),
    )
    return ChunkedExtractionService(
        chunker=PageChunker(pages_per_chunk=settings.pages_per_chunk),
        invoker=invoker,
        fallback=FallbackSelector(extractor),
        max_usd=settings.max_usd,
        concurrency=settings.concurrency,
    )


def run_chunked(args: argparse.Namespace, ctx: CLIContext) -> int:
    settings = settings_from_args(args, ctx.settings)
    pages = load_pages(args.pages)
    doc_id = doc_id_from_args(args)
    service = _build_chunked(args, ctx, settings, _build_extractor(settings))
    result = service.run(pages, doc_id=doc_id, options=extraction_options_from_args(args, settings, doc_id))
    return _report(args, ctx, result, title="Chunked Extraction")


def run_windowed(args: argparse.Namespace, ctx: CLIContext) -> int:
    settings = settings_from_args(args, ctx.settings)
    pages = load_pages(args.pages)
    doc_id = doc_id_from_args(args)
    extractor = _build_extractor(settings)
    chunked = _build_chunked(args, ctx, settings, extractor) if settings.baseline_mode == "chunked" else None
    critic_client = _optional_client(settings.llm_provider) if settings.critique_enabled else None
    orchestrator = WindowedOrchestrator(
        extractor=extractor,
        critic=CritiqueService(
            critic_client,
            model=settings.critique_model,
            enabled=settings.critique_enabled,
            timeout_seconds=settings.request_timeout_seconds,
            cost_per_1k_tokens=settings.cost_per_1k_tokens,
        ),
        chunked=chunked,
        window_size=settings.window_size,
        baseline_mode=settings.baseline_mode,
        max_usd=settings.max_usd,
    )
    result = orchestrator.run(pages, doc_id=doc_id, options=extraction_options_from_args(args, settings, doc_id))
    return _report(args, ctx, result, title="Windowed Extraction")


def run_deterministic(args: argparse.Namespace, ctx: CLIContext) -> int:
    settings = settings_from_args(args, ctx.settings)
    pages = load_pages(args.pages)
    doc_id = doc_id_from_args(args)
    extractor = _build_extractor(settings)
    outcome = extractor.extract(pages, extraction_options_from_args(args, settings, doc_id))
    result = DocumentResult(
        doc_id=doc_id,
        status=STATUS_OK if outcome.groups else STATUS_PARTIAL,
        groups=outcome.groups,
        warnings=outcome.warnings,
        validation_errors=validate_groups(outcome.groups),
        diagnostics=outcome.diagnostics,
    )
    return _report(args, ctx, result, title="Deterministic Extraction")


def _report(args: argparse.Namespace, ctx: CLIContext, result: DocumentResult, *, title: str) -> int:
    if args.out:
        write_text_atomic(args.out, json.dumps(result.to_dict(), ensure_ascii=False, indent=2, default=str))
    written = ArtifactStore(args.out_dir).write_result(result, args.out_dir) if args.out_dir else {}

    summary_lines = [
        f"Document: {result.doc_id}",
        f"Status: {result.status}",
        f"Groups: {len(result.groups)}",
        f"Variants: {result.variant_count}",
        f"Warnings: {len(result.warnings)}",
        f"Validation errors: {len(result.validation_errors)}",
    ]
    budget = result.diagnostics.get("budget")
    if budget:
        summary_lines.append(f"Spent: ${budget.get('spent_usd', 0.0):.4f}")
    if args.out:
        summary_lines.append(f"Result: {args.out}")
    for name, path in written.items():
        summary_lines.append(f"{name}: {path}")
    ctx.console.print(Panel.fit("\n".join(summary_lines), title=title))

    if result.groups:
        table = Table(title="Groups")
        table.add_column("Title", overflow="fold")
        table.add_column("Category")
        table.add_column("Pages")
        table.add_column("Variants", justify="right")
        for group in result.groups:
            pages = f"{group.page_start}-{group.page_end}" if group.page_start is not None else "-"
            table.add_row(group.title, group.category, pages, str(len(group.variants)))
        ctx.console.print(table)

    if result.audit:
        audit = Table(title="Windows")
        audit.add_column("Window", justify="right")
        audit.add_column("Pages")
        audit.add_column("Repairs", justify="right")
        audit.add_column("Final pass")
        for record in result.audit:
            audit.add_row(
                str(record.index + 1),
                f"{record.page_start}-{record.page_end}",
                str(len(record.repairs)),
                "yes" if record.final_pass else "no",
            )
        ctx.console.print(audit)

    if result.warnings:
        warnings = Table(title="Warnings")
        warnings.add_column("Warning", overflow="fold")
        for warning in result.warnings[:50]:
            warnings.add_row(warning)
        ctx.console.print(warnings)

    return 1 if result.status == STATUS_ERROR else 0
