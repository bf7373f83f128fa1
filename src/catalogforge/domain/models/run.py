from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from catalogforge.domain.models.catalog import Group

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"

_STATUS_SEVERITY = {STATUS_OK: 0, STATUS_PARTIAL: 1, STATUS_ERROR: 2}


def worst_status(statuses: list[str]) -> str:
    """Most severe of the given statuses (error > partial > ok); ok when empty."""
    worst = STATUS_OK
    for status in statuses:
        if _STATUS_SEVERITY.get(status, 2) > _STATUS_SEVERITY[worst]:
            worst = status if status in _STATUS_SEVERITY else STATUS_ERROR
    return worst


@dataclass(frozen=True)
class CritiqueVerdict:
    passed: bool
    repairs: tuple[str, ...] = ()
    explanations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"pass": self.passed, "repairs": list(self.repairs), "explanations": list(self.explanations)}


@dataclass(frozen=True)
class CritiqueRecord:
    iteration: int
    verdict: CritiqueVerdict

    def to_dict(self) -> dict[str, Any]:
        return {"iteration": self.iteration, **self.verdict.to_dict()}


@dataclass(frozen=True)
class RepairRecord:
    iteration: int
    directives: tuple[str, ...]
    adjustments: tuple[dict[str, Any], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "directives": list(self.directives),
            "adjustments": [dict(item) for item in self.adjustments],
        }


@dataclass(frozen=True)
class WindowAudit:
    index: int
    page_start: int
    page_end: int
    critiques: tuple[CritiqueRecord, ...]
    repairs: tuple[RepairRecord, ...]
    final_pass: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "page_start": self.page_start,
            "page_end": self.page_end,
            "critiques": [record.to_dict() for record in self.critiques],
            "repairs": [record.to_dict() for record in self.repairs],
            "final_pass": self.final_pass,
        }


@dataclass(slots=True)
class DocumentResult:
    doc_id: str | None
    status: str
    groups: list[Group] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    validation_errors: list[dict[str, Any]] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)
    audit: list[WindowAudit] = field(default_factory=list)

    @property
    def variant_count(self) -> int:
        return sum(len(group.variants) for group in self.groups)

    def to_dict(self) -> dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "status": self.status,
            "groups": [group.to_dict() for group in self.groups],
            "notes": list(self.notes),
            "warnings": list(self.warnings),
            "validation_errors": list(self.validation_errors),
            "diagnostics": self.diagnostics,
            "audit": [record.to_dict() for record in self.audit],
        }
