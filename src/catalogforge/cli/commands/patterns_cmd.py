from __future__ import annotations

import argparse
from pathlib import Path

from rich.table import Table

from catalogforge.cli.context import CLIContext
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("patterns", help="Inspect the column pattern registry")
    patterns_subparsers = parser.add_subparsers(dest="patterns_command", required=True)

    list_parser = patterns_subparsers.add_parser("list", help="List registered column patterns")
    list_parser.add_argument("--dir", type=Path, default=None, help="Pattern directory override")
    list_parser.set_defaults(handler=run_list)


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    registry = PatternRegistry.load(args.dir or ctx.settings.patterns_dir)

    table = Table(title=f"Patterns ({registry.directory})")
    table.add_column("ID")
    table.add_column("Description", overflow="fold")
    table.add_column("Columns", overflow="fold")
    table.add_column("Required")
    table.add_column("Min confidence", justify="right")
    for pattern in registry.patterns:
        table.add_row(
            pattern.id,
            pattern.description,
            ", ".join(column.role for column in pattern.columns),
            ", ".join(pattern.required_roles) or "-",
            f"{pattern.min_confidence:.2f}",
        )
    ctx.console.print(table)

    if registry.errors:
        errors = Table(title="Load Errors")
        errors.add_column("Message", overflow="fold")
        for message in registry.errors:
            errors.add_row(message)
        ctx.console.print(errors)
        return 1
    return 0
