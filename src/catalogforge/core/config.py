from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from catalogforge.core.errors import ConfigurationError


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    data_dir: Path
    db_path: Path
    artifacts_dir: Path


DEFAULT_DATA_DIRNAME = ".catalogforge"
LLM_PROVIDERS = ("openai", "ollama", "none")
BASELINE_MODES = ("deterministic", "chunked")


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    home_raw = os.getenv("CATALOGFORGE_HOME")
    if home_raw:
        data_dir = Path(home_raw).expanduser().resolve()
    else:
        data_dir = root / DEFAULT_DATA_DIRNAME

    return AppPaths(
        project_root=root,
        data_dir=data_dir,
        db_path=data_dir / "cache.db",
        artifacts_dir=data_dir / "artifacts",
    )


@dataclass(frozen=True)
class PipelineSettings:
    llm_provider: str = "openai"
    llm_model: str = "gpt-5"
    max_usd: float = 10.0
    cost_per_1k_tokens: float = 0.015
    concurrency: int = 2
    max_attempts: int = 3
    retry_delay_seconds: float = 0.5
    request_timeout_seconds: float = 120.0
    pages_per_chunk: int = 10
    window_size: int = 20
    baseline_mode: str = "deterministic"
    critique_enabled: bool = True
    critique_model: str = "gpt-4.1-mini"
    min_confidence: float = 0.5
    patterns_dir: Path | None = None

    def with_overrides(self, **overrides: object) -> PipelineSettings:
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.llm_provider not in LLM_PROVIDERS:
            raise ConfigurationError(
                f"Unknown LLM provider '{self.llm_provider}'. Expected one of: {', '.join(LLM_PROVIDERS)}"
            )
        if self.baseline_mode not in BASELINE_MODES:
            raise ConfigurationError(
                f"Unknown baseline mode '{self.baseline_mode}'. Expected one of: {', '.join(BASELINE_MODES)}"
            )
        if self.pages_per_chunk < 1:
            raise ConfigurationError("pages_per_chunk must be at least 1")
        if self.window_size < 1:
            raise ConfigurationError("window_size must be at least 1")
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigurationError("min_confidence must be within [0, 1]")


def _read_str_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _read_float_env(name: str, default: float, *, allow_zero: bool = False) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value > 0 or (allow_zero and value == 0):
        return value
    return default


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def load_settings() -> PipelineSettings:
    """Build pipeline settings from CATALOGFORGE_* environment variables."""
    patterns_raw = os.getenv("CATALOGFORGE_PATTERNS_DIR")
    settings = PipelineSettings(
        llm_provider=_read_str_env("CATALOGFORGE_LLM_PROVIDER", "openai").lower(),
        llm_model=_read_str_env("CATALOGFORGE_LLM_MODEL", "gpt-5"),
        # A zero ceiling disables budget enforcement.
        max_usd=_read_float_env("CATALOGFORGE_LLM_MAX_USD", 10.0, allow_zero=True),
        cost_per_1k_tokens=_read_float_env("CATALOGFORGE_LLM_COST_PER_1K", 0.015, allow_zero=True),
        concurrency=_read_int_env("CATALOGFORGE_LLM_CONCURRENCY", 2),
        max_attempts=_read_int_env("CATALOGFORGE_LLM_MAX_ATTEMPTS", 3),
        retry_delay_seconds=_read_float_env("CATALOGFORGE_LLM_RETRY_DELAY", 0.5, allow_zero=True),
        request_timeout_seconds=_read_float_env("CATALOGFORGE_LLM_TIMEOUT", 120.0),
        pages_per_chunk=_read_int_env("CATALOGFORGE_PAGES_PER_CHUNK", 10),
        window_size=_read_int_env("CATALOGFORGE_WINDOW_SIZE", 20),
        baseline_mode=_read_str_env("CATALOGFORGE_BASELINE_MODE", "deterministic").lower(),
        critique_enabled=_env_bool("CATALOGFORGE_CRITIQUE_ENABLED", True),
        critique_model=_read_str_env("CATALOGFORGE_CRITIQUE_MODEL", "gpt-4.1-mini"),
        min_confidence=_read_float_env("CATALOGFORGE_MIN_CONFIDENCE", 0.5, allow_zero=True),
        patterns_dir=Path(patterns_raw).expanduser().resolve() if patterns_raw else None,
    )
    settings.validate()
    return settings


@dataclass(frozen=True)
class SqliteSettings:
    connect_timeout_seconds: float = 30.0
    busy_timeout_ms: int = 30_000


def load_sqlite_settings() -> SqliteSettings:
    return SqliteSettings(
        connect_timeout_seconds=_read_float_env("CATALOGFORGE_SQLITE_CONNECT_TIMEOUT_SECONDS", 30.0),
        busy_timeout_ms=_read_int_env("CATALOGFORGE_SQLITE_BUSY_TIMEOUT_MS", 30_000),
    )
