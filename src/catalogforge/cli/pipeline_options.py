from __future__ import annotations

import argparse
import json
from pathlib import Path

from catalogforge.core.config import BASELINE_MODES, LLM_PROVIDERS, PipelineSettings
from catalogforge.core.errors import PageModelError
from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page, pages_from_payload


def add_page_input_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("pages", type=Path, help="Page model JSON (a list of pages or {\"pages\": [...]})")
    parser.add_argument("--doc-id", help="Document identifier (default: the input file stem)")


def add_extraction_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--prefer-pattern",
        action="append",
        default=[],
        help="Try this registered pattern first; repeat to give several in order.",
    )
    parser.add_argument(
        "--force-price-anchored",
        action="store_true",
        help="Always run price-anchored recovery and let it replace pattern output.",
    )
    parser.add_argument("--min-confidence", type=float, default=None, help="Row confidence floor for recovery.")
    parser.add_argument("--out", type=Path, help="Write the document result JSON to this path")
    parser.add_argument("--out-dir", type=Path, help="Write catalog/qc/provenance/audit artifacts here")


def add_llm_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--provider", choices=LLM_PROVIDERS, default=None, help="Completion provider override.")
    parser.add_argument("--model", default=None, help="Completion model override.")
    parser.add_argument("--max-usd", type=float, default=None, help="Spend ceiling in USD (0 disables it).")
    parser.add_argument("--cost-per-1k", type=float, default=None, help="USD per 1000 estimated tokens.")
    parser.add_argument("--concurrency", type=int, default=None, help="Chunk worker count.")
    parser.add_argument("--pages-per-chunk", type=int, default=None)
    parser.add_argument("--no-cache", action="store_true", help="Skip the persisted chunk cache.")


def add_window_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--window-size", type=int, default=None, help="Pages per window.")
    parser.add_argument("--baseline", choices=BASELINE_MODES, default=None, help="Baseline extraction per window.")
    parser.add_argument(
        "--critique",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable the critique step (default: from settings).",
    )
    parser.add_argument("--critique-model", default=None)


def settings_from_args(args: argparse.Namespace, settings: PipelineSettings) -> PipelineSettings:
    return settings.with_overrides(
        llm_provider=getattr(args, "provider", None),
        llm_model=getattr(args, "model", None),
        max_usd=getattr(args, "max_usd", None),
        cost_per_1k_tokens=getattr(args, "cost_per_1k", None),
        concurrency=getattr(args, "concurrency", None),
        pages_per_chunk=getattr(args, "pages_per_chunk", None),
        window_size=getattr(args, "window_size", None),
        baseline_mode=getattr(args, "baseline", None),
        critique_enabled=getattr(args, "critique", None),
        critique_model=getattr(args, "critique_model", None),
        min_confidence=getattr(args, "min_confidence", None),
    )


def extraction_options_from_args(
    args: argparse.Namespace,
    settings: PipelineSettings,
    doc_id: str | None,
) -> ExtractionOptions:
    return ExtractionOptions(
        doc_id=doc_id,
        preferred_patterns=tuple(getattr(args, "prefer_pattern", None) or ()),
        force_price_anchored=bool(getattr(args, "force_price_anchored", False)),
        minimum_confidence=settings.min_confidence,
    )


def load_pages(path: Path) -> list[Page]:
    if not path.is_file():
        raise PageModelError(f"Page model file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PageModelError(f"Page model {path} is not valid JSON: {exc}") from exc
    return pages_from_payload(payload)


def doc_id_from_args(args: argparse.Namespace) -> str:
    return args.doc_id or args.pages.stem
