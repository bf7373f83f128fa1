from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from catalogforge.application.services.budget_service import BudgetTracker
from catalogforge.application.services.chunk_pipeline_service import CannedResponses, ChunkedExtractionService
from catalogforge.application.services.critique_service import Critic, CritiqueRequest
from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.application.services.merge_service import ChunkMerger, MergeInput
from catalogforge.application.services.repair_service import apply_repair_plan, parse_repair_directives
from catalogforge.core.errors import CatalogForgeError, ConfigurationError, ExtractorFailureError
from catalogforge.domain.models.catalog import Group, Provenance
from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page
from catalogforge.domain.models.run import (
    STATUS_ERROR,
    STATUS_OK,
    STATUS_PARTIAL,
    CritiqueRecord,
    CritiqueVerdict,
    DocumentResult,
    RepairRecord,
    WindowAudit,
    worst_status,
)
from catalogforge.domain.validation import validate_groups
from catalogforge.infrastructure.chunking.page_chunker import page_number_of

logger = logging.getLogger(__name__)

MAX_REPAIR_ITERATIONS = 3
DEFAULT_WINDOW_SIZE = 20
BASELINE_DETERMINISTIC = "deterministic"
BASELINE_CHUNKED = "chunked"


@dataclass(frozen=True)
class Window:
    index: int
    page_start: int
    page_end: int
    pages: tuple[Page, ...]


@dataclass(slots=True)
class Candidate:
    """One baseline (or repaired) extraction of a window."""

    status: str
    groups: list[Group] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)


def plan_windows(pages: list[Page], window_size: int) -> list[Window]:
    windows: list[Window] = []
    for index, offset in enumerate(range(0, len(pages), window_size)):
        slice_ = tuple(pages[offset : offset + window_size])
        windows.append(
            Window(
                index=index,
                page_start=page_number_of(slice_[0], offset),
                page_end=page_number_of(slice_[-1], offset + len(slice_) - 1),
                pages=slice_,
            )
        )
    return windows


class WindowedOrchestrator:
    """Window-by-window extraction with a critique step and a bounded repair loop.

    Each window runs baseline -> critique -> (repair -> critique)* and always
    ends with its last candidate, whatever the final verdict. Windows run one
    after another; their groups are merged with window provenance attached.
    """

    def __init__(
        self,
        *,
        extractor: DeterministicExtractor,
        critic: Critic,
        chunked: ChunkedExtractionService | None = None,
        merger: ChunkMerger | None = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        baseline_mode: str = BASELINE_DETERMINISTIC,
        max_repairs: int = MAX_REPAIR_ITERATIONS,
        max_usd: float = 10.0,
    ) -> None:
        if window_size < 1:
            raise ConfigurationError("window_size must be at least 1")
        if baseline_mode not in (BASELINE_DETERMINISTIC, BASELINE_CHUNKED):
            raise ConfigurationError(f"Unknown baseline mode '{baseline_mode}'")
        if baseline_mode == BASELINE_CHUNKED and chunked is None:
            raise ConfigurationError("The chunked baseline needs a chunked extraction service")
        self.extractor = extractor
        self.critic = critic
        self.chunked = chunked
        self.merger = merger or ChunkMerger()
        self.window_size = window_size
        self.baseline_mode = baseline_mode
        self.max_repairs = max(0, max_repairs)
        self.max_usd = chunked.max_usd if chunked is not None else max_usd

    def run(
        self,
        pages: list[Page],
        *,
        doc_id: str | None = None,
        options: ExtractionOptions | None = None,
        budget: BudgetTracker | None = None,
        canned_responses: CannedResponses | None = None,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> DocumentResult:
        base_options = options or ExtractionOptions(doc_id=doc_id)
        if not pages:
            logger.warning("Document %s has no pages; nothing to orchestrate", doc_id)
            return DocumentResult(
                doc_id=doc_id,
                status=STATUS_PARTIAL,
                warnings=["window_pipeline_no_pages"],
                diagnostics={"windows": [], "baseline_mode": self.baseline_mode},
            )
        if budget is None:
            # One budget covers baseline and critique calls across all windows.
            budget = BudgetTracker(self.max_usd)

        windows = plan_windows(pages, self.window_size)
        inputs: list[MergeInput] = []
        audits: list[WindowAudit] = []
        statuses: list[str] = []
        warnings: list[str] = []
        notes: list[str] = []
        window_diagnostics: list[dict[str, Any]] = []

        for window in windows:
            candidate, audit = self._run_window(
                window,
                doc_id=doc_id,
                total_pages=len(pages),
                options=base_options,
                budget=budget,
                canned_responses=canned_responses,
                cancel_event=cancel_event,
                deadline=deadline,
            )
            audits.append(audit)
            statuses.append(candidate.status)
            warnings.extend(candidate.warnings)
            notes.extend(candidate.notes)
            if not audit.final_pass:
                warnings.append(f"window_{window.index + 1}_accepted_without_pass")
            inputs.append(
                MergeInput(
                    groups=candidate.groups,
                    provenance=Provenance(
                        source=self.baseline_mode,
                        page_start=window.page_start,
                        page_end=window.page_end,
                        window_index=window.index,
                        window_page_start=window.page_start,
                        window_page_end=window.page_end,
                    ),
                )
            )
            window_diagnostics.append(
                {
                    "index": window.index,
                    "page_start": window.page_start,
                    "page_end": window.page_end,
                    "status": candidate.status,
                    "groups": len(candidate.groups),
                    "variants": sum(len(group.variants) for group in candidate.groups),
                    "repairs": len(audit.repairs),
                    "final_pass": audit.final_pass,
                    "baseline": candidate.diagnostics,
                }
            )

        merged = self.merger.merge(inputs)
        status = worst_status(statuses)
        if merged.price_conflicts:
            warnings.append(f"price_conflicts:{len(merged.price_conflicts)}")
        diagnostics: dict[str, Any] = {
            "baseline_mode": self.baseline_mode,
            "window_size": self.window_size,
            "windows": window_diagnostics,
            "price_conflicts": [conflict.to_dict() for conflict in merged.price_conflicts],
            "canonical_headers": merged.canonical_headers,
            "provenance": merged.provenance_map(),
        }
        diagnostics["budget"] = budget.snapshot().to_dict()

        logger.info(
            "Document %s: %s window(s), %s group(s), status %s", doc_id, len(windows), len(merged.groups), status
        )
        return DocumentResult(
            doc_id=doc_id,
            status=status,
            groups=merged.groups,
            notes=notes,
            warnings=warnings,
            validation_errors=validate_groups(merged.groups),
            diagnostics=diagnostics,
            audit=audits,
        )

    def _run_window(
        self,
        window: Window,
        *,
        doc_id: str | None,
        total_pages: int,
        options: ExtractionOptions,
        budget: BudgetTracker | None,
        canned_responses: CannedResponses | None,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> tuple[Candidate, WindowAudit]:
        def baseline(pages: list[Page], run_options: ExtractionOptions) -> Candidate:
            return self._baseline(
                window,
                pages,
                doc_id=doc_id,
                options=run_options,
                budget=budget,
                canned_responses=canned_responses,
                cancel_event=cancel_event,
                deadline=deadline,
            )

        candidate = baseline(list(window.pages), options)
        critiques: list[CritiqueRecord] = []
        repairs: list[RepairRecord] = []

        while True:
            verdict = self._critique(window, candidate, doc_id=doc_id, total_pages=total_pages, budget=budget)
            critiques.append(CritiqueRecord(iteration=len(critiques), verdict=verdict))
            if verdict.passed or len(repairs) >= self.max_repairs:
                break

            plan = parse_repair_directives(verdict.repairs)
            repairs.append(
                RepairRecord(
                    iteration=len(repairs) + 1,
                    directives=tuple(verdict.repairs),
                    adjustments=plan.to_dicts(),
                )
            )
            logger.info(
                "Window %s (pages %s-%s): repair %s/%s with %s adjustment(s)",
                window.index + 1,
                window.page_start,
                window.page_end,
                len(repairs),
                self.max_repairs,
                len(plan.adjustments),
            )
            # Every repair starts again from the window's original pages.
            candidate = baseline(apply_repair_plan(list(window.pages), plan), plan.extraction_options(options))

        audit = WindowAudit(
            index=window.index,
            page_start=window.page_start,
            page_end=window.page_end,
            critiques=tuple(critiques),
            repairs=tuple(repairs),
            final_pass=critiques[-1].verdict.passed,
        )
        return candidate, audit

    def _baseline(
        self,
        window: Window,
        pages: list[Page],
        *,
        doc_id: str | None,
        options: ExtractionOptions,
        budget: BudgetTracker | None,
        canned_responses: CannedResponses | None,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> Candidate:
        if self.baseline_mode == BASELINE_CHUNKED:
            result = self.chunked.run(
                pages,
                doc_id=doc_id,
                options=options,
                budget=budget,
                canned_responses=canned_responses,
                cancel_event=cancel_event,
                deadline=deadline,
                chunk_namespace=f"{doc_id or 'doc'}-w{window.index + 1:02d}",
            )
            return Candidate(
                status=result.status,
                groups=result.groups,
                warnings=result.warnings,
                notes=result.notes,
                diagnostics={"chunks": result.diagnostics.get("chunks", [])},
            )

        try:
            outcome = self.extractor.extract(pages, options)
        except ExtractorFailureError as exc:
            logger.warning("Deterministic baseline failed for window %s: %s", window.index + 1, exc)
            return Candidate(status=STATUS_ERROR, warnings=[f"extractor_failed:{exc}"])
        except Exception as exc:
            logger.exception("Deterministic baseline crashed for window %s", window.index + 1)
            return Candidate(status=STATUS_ERROR, warnings=[f"extractor_failed:{type(exc).__name__}: {exc}"])
        return Candidate(
            status=STATUS_OK if outcome.groups else STATUS_PARTIAL,
            groups=outcome.groups,
            warnings=outcome.warnings,
            diagnostics=outcome.diagnostics,
        )

    def _critique(
        self,
        window: Window,
        candidate: Candidate,
        *,
        doc_id: str | None,
        total_pages: int,
        budget: BudgetTracker | None,
    ) -> CritiqueVerdict:
        request = CritiqueRequest(
            doc_id=doc_id,
            window_index=window.index,
            page_start=window.page_start,
            page_end=window.page_end,
            total_pages=total_pages,
            pages=window.pages,
            groups=candidate.groups,
            diagnostics={"status": candidate.status, "warnings": candidate.warnings, **candidate.diagnostics},
            budget=budget,
        )
        try:
            return self.critic.review(request)
        except CatalogForgeError as exc:
            logger.warning("Critique failed for window %s; accepting the candidate: %s", window.index + 1, exc)
            return CritiqueVerdict(passed=True, explanations=(f"critique_unavailable:{exc}",))
        except Exception as exc:
            logger.exception("Critique crashed for window %s; accepting the candidate", window.index + 1)
            return CritiqueVerdict(passed=True, explanations=(f"critique_unavailable:{exc}",))
