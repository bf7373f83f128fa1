from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from catalogforge.core.errors import PatternRegistryError

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_DIR = Path(__file__).resolve().parents[2] / "patterns"
KNOWN_ROLES = ("code", "cas", "name", "pack", "price", "currency", "notes", "hsn", "gst")


@dataclass(frozen=True)
class PatternColumn:
    role: str
    header_keywords: tuple[str, ...] = ()
    required: bool = False
    value_regex: re.Pattern[str] | None = None

    def accepts(self, value: str) -> bool:
        return bool(value) and (self.value_regex is None or self.value_regex.search(value) is not None)


@dataclass(frozen=True)
class PackRule:
    pattern: re.Pattern[str]
    format: str | None = None


@dataclass(frozen=True)
class CurrencyRules:
    symbols: dict[str, str] = field(default_factory=dict)
    codes: dict[str, str] = field(default_factory=dict)
    default: str | None = None


@dataclass(frozen=True)
class ColumnPattern:
    id: str
    description: str
    columns: tuple[PatternColumn, ...]
    required_roles: tuple[str, ...] = ()
    min_confidence: float = 0.0
    pack_rules: tuple[PackRule, ...] = ()
    currency: CurrencyRules = field(default_factory=CurrencyRules)
    filename: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, filename: str | None = None) -> ColumnPattern:
        pattern_id = str(data.get("id") or (Path(filename).stem if filename else "")).strip()
        if not pattern_id:
            raise PatternRegistryError(f"Pattern {filename or '<inline>'} has no id")

        columns: list[PatternColumn] = []
        for entry in data.get("columns") or []:
            role = str(entry.get("role") or "").strip().lower()
            if role not in KNOWN_ROLES:
                raise PatternRegistryError(f"Pattern {pattern_id} uses unknown column role '{role}'")
            value_regex = entry.get("value_regex")
            columns.append(
                PatternColumn(
                    role=role,
                    header_keywords=tuple(str(k).lower() for k in entry.get("header_keywords") or []),
                    required=bool(entry.get("required", False)),
                    value_regex=_compile(value_regex, pattern_id) if value_regex else None,
                )
            )
        if not columns:
            raise PatternRegistryError(f"Pattern {pattern_id} declares no columns")

        validation = data.get("validation") or {}
        normalization = data.get("normalization") or {}
        units = normalization.get("units") or {}
        currency = normalization.get("currency") or {}
        return cls(
            id=pattern_id,
            description=str(data.get("description") or pattern_id),
            columns=tuple(columns),
            required_roles=tuple(str(r).lower() for r in validation.get("required_roles") or []),
            min_confidence=float(validation.get("min_confidence") or 0.0),
            pack_rules=tuple(
                PackRule(pattern=_compile(rule["pattern"], pattern_id), format=rule.get("format"))
                for rule in units.get("pack") or []
                if isinstance(rule, dict) and rule.get("pattern")
            ),
            currency=CurrencyRules(
                symbols={str(k): str(v) for k, v in (currency.get("symbols") or {}).items()},
                codes={str(k).lower(): str(v) for k, v in (currency.get("codes") or {}).items()},
                default=currency.get("default"),
            ),
            filename=filename,
        )


def _compile(expression: str, pattern_id: str) -> re.Pattern[str]:
    try:
        return re.compile(expression, re.IGNORECASE)
    except re.error as exc:
        raise PatternRegistryError(f"Pattern {pattern_id} has an invalid regex {expression!r}: {exc}") from exc


@dataclass(slots=True)
class PatternRegistry:
    patterns: list[ColumnPattern] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    directory: Path | None = None

    def ids(self) -> list[str]:
        return [pattern.id for pattern in self.patterns]

    def get(self, pattern_id: str) -> ColumnPattern | None:
        return next((p for p in self.patterns if p.id == pattern_id), None)

    def ordered(self, preferred: tuple[str, ...] | list[str] = ()) -> list[ColumnPattern]:
        """Preferred patterns first (in hint order), then the rest in registry order."""
        front: list[ColumnPattern] = []
        for hint in preferred:
            found = self.get(str(hint).strip())
            if found is not None and found not in front:
                front.append(found)
        return front + [p for p in self.patterns if p not in front]

    @classmethod
    def load(cls, directory: Path | None = None) -> PatternRegistry:
        """Read every *.json pattern in a directory, widest patterns first.

        Files that fail to parse are reported in ``errors`` rather than raised,
        so one bad pattern never disables the rest of the registry.
        """
        directory = directory or DEFAULT_PATTERNS_DIR
        registry = cls(directory=directory)
        if not directory.is_dir():
            registry.errors.append(f"registry_read_failed:{directory} is not a directory")
            return registry

        for path in sorted(directory.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise PatternRegistryError(f"Pattern {path.name} is not a JSON object")
                registry.patterns.append(ColumnPattern.from_dict(data, filename=path.name))
            except (json.JSONDecodeError, PatternRegistryError, KeyError, TypeError, ValueError) as exc:
                message = f"Failed to parse pattern {path.name}: {exc}"
                logger.warning(message)
                registry.errors.append(message)

        registry.patterns.sort(key=lambda p: len(p.columns), reverse=True)
        return registry
