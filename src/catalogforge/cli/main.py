from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console

from catalogforge.cli.commands import cache_cmd, chunks_cmd, extract_cmd, patterns_cmd
from catalogforge.cli.context import CLIContext
from catalogforge.core.config import load_paths, load_settings
from catalogforge.core.errors import CatalogForgeError
from catalogforge.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalogforge",
        description="Price-list catalog extraction CLI",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .catalogforge data (default: current working directory)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    extract_cmd.register(subparsers)
    chunks_cmd.register(subparsers)
    cache_cmd.register(subparsers)
    patterns_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        paths = load_paths(args.project_root)
        ctx = CLIContext(paths=paths, settings=load_settings(), console=console)
        return handler(args, ctx)
    except CatalogForgeError as exc:
        logger.error(str(exc))
        return 1
