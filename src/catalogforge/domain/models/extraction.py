from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from catalogforge.domain.models.catalog import Group


@dataclass(frozen=True)
class ExtractionOptions:
    """Knobs for one deterministic extraction pass."""

    doc_id: str | None = None
    preferred_patterns: tuple[str, ...] = ()
    force_price_anchored: bool = False
    minimum_confidence: float = 0.5


@dataclass(frozen=True)
class PatternAttempt:
    pattern_id: str
    matched_rows: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"pattern_id": self.pattern_id, "matched_rows": self.matched_rows, "reason": self.reason}


@dataclass(slots=True)
class ExtractionOutcome:
    groups: list[Group] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)
