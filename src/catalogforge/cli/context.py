from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from catalogforge.core.config import AppPaths, PipelineSettings


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    settings: PipelineSettings
    console: Console
