from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from catalogforge.application.services.budget_service import BudgetReservation, BudgetTracker
from catalogforge.application.services.invocation_service import DEFAULT_COST_PER_1K_TOKENS, estimate_tokens
from catalogforge.core.errors import (
    BudgetExceededError,
    CompletionServiceError,
    CritiqueUnavailableError,
    MalformedResponseError,
)
from catalogforge.domain.models.catalog import Group
from catalogforge.domain.models.page import Page, TableSegment, TextSegment
from catalogforge.domain.models.run import CritiqueVerdict
from catalogforge.infrastructure.llm.client import CompletionClient, CompletionRequest
from catalogforge.infrastructure.llm.prompts import build_critique_prompt
from catalogforge.infrastructure.llm.schema import CritiqueResponsePayload, parse_critique_response, response_json_schema

logger = logging.getLogger(__name__)

SAMPLE_PAGES = 8
SAMPLE_GROUPS = 6
SAMPLE_VARIANTS = 6
SAMPLE_TEXT_CHARS = 220


@dataclass(frozen=True)
class CritiqueRequest:
    doc_id: str | None
    window_index: int
    page_start: int
    page_end: int
    total_pages: int
    pages: tuple[Page, ...]
    groups: list[Group] = field(default_factory=list)
    diagnostics: dict[str, Any] = field(default_factory=dict)
    budget: BudgetTracker | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "window": {
                "index": self.window_index,
                "page_start": self.page_start,
                "page_end": self.page_end,
                "total_pages": self.total_pages,
            },
            "doc_id": self.doc_id,
            "segments": [summarise_page(page) for page in self.pages[:SAMPLE_PAGES]],
            "groups": summarise_groups(self.groups),
            "diagnostics": summarise_diagnostics(self.diagnostics),
        }


class Critic(Protocol):
    def review(self, request: CritiqueRequest) -> CritiqueVerdict: ...


def summarise_page(page: Page) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "page_number": page.page_number,
        "text": [segment.text[:SAMPLE_TEXT_CHARS] for segment in page.segments if isinstance(segment, TextSegment)][:3],
        "tables": [
            {
                "header": " | ".join(segment.header)[:160],
                "rows": [" | ".join(row)[:160] for row in segment.rows[:3]],
            }
            for segment in page.segments
            if isinstance(segment, TableSegment)
        ][:2],
    }
    if not summary["text"] and page.raw_text:
        summary["text_preview"] = page.raw_text[:280]
    return summary


def summarise_groups(groups: list[Group]) -> list[dict[str, Any]]:
    sampled: list[dict[str, Any]] = []
    for group in groups[:SAMPLE_GROUPS]:
        variants = []
        for variant in group.variants[:SAMPLE_VARIANTS]:
            payload = {
                key: (value[:160] if isinstance(value, str) else value)
                for key, value in variant.to_dict().items()
                if value is not None and value != [] and value != ""
            }
            variants.append(payload)
        sampled.append(
            {
                "title": group.title,
                "category": group.category,
                "page_start": group.page_start,
                "page_end": group.page_end,
                "specs_headers": group.specs_headers[:6],
                "variants": variants,
            }
        )
    return sampled


def summarise_diagnostics(diagnostics: dict[str, Any]) -> dict[str, Any]:
    """Scalars as-is; lists and mappings cut to their first five entries."""
    output: dict[str, Any] = {}
    for key, value in diagnostics.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            output[key] = value
        elif isinstance(value, (list, tuple)):
            output[key] = list(value[:5])
        elif isinstance(value, dict):
            output[key] = dict(list(value.items())[:5])
    return output


class CritiqueService:
    """Asks a completion model whether a window's groups read the pages faithfully.

    Every failure mode is fail-open: a disabled, unconfigured or broken
    critique yields a passing verdict whose explanations say why.
    """

    def __init__(
        self,
        client: CompletionClient | None,
        *,
        model: str,
        enabled: bool = True,
        timeout_seconds: float | None = None,
        cost_per_1k_tokens: float = DEFAULT_COST_PER_1K_TOKENS,
    ) -> None:
        self.client = client
        self.model = model
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.cost_per_1k_tokens = max(0.0, cost_per_1k_tokens)
        self._schema = response_json_schema(CritiqueResponsePayload)

    def review(self, request: CritiqueRequest) -> CritiqueVerdict:
        if not self.enabled:
            return CritiqueVerdict(passed=True, explanations=("critique_disabled",))
        if self.client is None:
            return CritiqueVerdict(passed=True, explanations=("critique_unconfigured",))
        try:
            return self._ask(request)
        except CritiqueUnavailableError as exc:
            logger.warning("Critique unavailable for window %s: %s", request.window_index, exc)
            return CritiqueVerdict(passed=True, explanations=(f"critique_unavailable:{exc}",))

    def cost_for_tokens(self, tokens: int) -> float:
        return tokens / 1000.0 * self.cost_per_1k_tokens

    def _ask(self, request: CritiqueRequest) -> CritiqueVerdict:
        system, user = build_critique_prompt(request.to_payload())
        estimated_tokens = estimate_tokens(system, user)
        budget = request.budget
        reservation: BudgetReservation | None = None
        if budget is not None:
            try:
                reservation = budget.reserve(self.cost_for_tokens(estimated_tokens))
            except BudgetExceededError as exc:
                raise CritiqueUnavailableError(f"budget_exceeded: {exc}") from exc

        actual_cost = 0.0
        try:
            response = self.client.complete(
                CompletionRequest(
                    model=self.model,
                    system=system,
                    user=user,
                    response_schema=self._schema,
                    schema_name="catalog_critique",
                    timeout_seconds=self.timeout_seconds,
                )
            )
            used_tokens = response.usage.total_tokens if response.usage and response.usage.total_tokens > 0 else 0
            actual_cost = self.cost_for_tokens(used_tokens or estimated_tokens)
            parsed = parse_critique_response(response.content)
        except (CompletionServiceError, MalformedResponseError) as exc:
            raise CritiqueUnavailableError(str(exc)) from exc
        finally:
            if reservation is not None:
                budget.settle(reservation, actual_cost)
        logger.debug(
            "Critique for window %s: pass=%s, %s repair(s)", request.window_index, parsed.passed, len(parsed.repairs)
        )
        return CritiqueVerdict(
            passed=parsed.passed,
            repairs=tuple(parsed.repairs),
            explanations=tuple(parsed.explanations),
        )
