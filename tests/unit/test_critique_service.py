from __future__ import annotations

import json
from dataclasses import replace

import pytest

from catalogforge.application.services.budget_service import BudgetTracker
from catalogforge.application.services.critique_service import CritiqueRequest, CritiqueService, summarise_diagnostics
from catalogforge.core.errors import TransientServiceError
from catalogforge.domain.models.catalog import Group, Variant
from catalogforge.domain.models.chunk import TokenUsage
from catalogforge.domain.models.page import Page, TableSegment, TextSegment
from catalogforge.infrastructure.llm.client import CompletionRequest, CompletionResponse


class FakeClient:
    def __init__(self, response: object) -> None:
        self.response = response
        self.requests: list[CompletionRequest] = []

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _request() -> CritiqueRequest:
    page = Page(
        page_number=1,
        segments=(
            TextSegment(id="p1-h1", text="Glassware price list"),
            TableSegment(id="p1-table1", header=("Cat No", "Price"), rows=(("AB-100", "450"),)),
        ),
    )
    return CritiqueRequest(
        doc_id="acme",
        window_index=0,
        page_start=1,
        page_end=1,
        total_pages=1,
        pages=(page,),
        groups=[Group(title="Glassware", variants=[Variant(code="AB-100", price_value=450.0, confidence=0.8)])],
        diagnostics={"status": "ok", "warnings": ["a", "b", "c", "d", "e", "f"], "skipped": None},
    )


def test_review_parses_the_model_verdict() -> None:
    content = json.dumps(
        {"pass": False, "repairs": ["column 2 -> price", {"action": "stitch"}], "explanations": "prices shifted"}
    )
    client = FakeClient(CompletionResponse(content=content))

    verdict = CritiqueService(client, model="critic-model").review(_request())

    assert verdict.passed is False
    assert verdict.repairs == ("column 2 -> price", '{"action": "stitch"}')
    assert verdict.explanations == ("prices shifted",)
    assert client.requests[0].model == "critic-model"
    assert client.requests[0].schema_name == "catalog_critique"


def test_review_is_fail_open() -> None:
    disabled = CritiqueService(FakeClient(None), model="m", enabled=False).review(_request())
    unconfigured = CritiqueService(None, model="m").review(_request())
    broken = CritiqueService(FakeClient(TransientServiceError("overloaded", status_code=503)), model="m").review(_request())
    garbled = CritiqueService(FakeClient(CompletionResponse(content="I think it is fine")), model="m").review(_request())

    assert disabled.passed and disabled.explanations == ("critique_disabled",)
    assert unconfigured.passed and unconfigured.explanations == ("critique_unconfigured",)
    assert broken.passed and broken.explanations[0].startswith("critique_unavailable:")
    assert garbled.passed and garbled.explanations[0].startswith("critique_unavailable:")


def test_request_payload_samples_pages_groups_and_diagnostics() -> None:
    payload = _request().to_payload()

    assert payload["window"] == {"index": 0, "page_start": 1, "page_end": 1, "total_pages": 1}
    assert payload["segments"][0]["text"] == ["Glassware price list"]
    assert payload["segments"][0]["tables"][0] == {"header": "Cat No | Price", "rows": ["AB-100 | 450"]}
    variant = payload["groups"][0]["variants"][0]
    assert variant["code"] == "AB-100"
    assert "name" not in variant
    assert payload["diagnostics"] == {"status": "ok", "warnings": ["a", "b", "c", "d", "e"]}


def test_summarise_diagnostics_trims_mappings() -> None:
    summary = summarise_diagnostics({"counts": {str(i): i for i in range(8)}, "flag": True})

    assert len(summary["counts"]) == 5
    assert summary["flag"] is True


def test_review_books_its_cost_against_the_document_budget() -> None:
    content = json.dumps({"pass": True, "repairs": [], "explanations": []})
    client = FakeClient(CompletionResponse(content=content, usage=TokenUsage(total_tokens=2000)))
    budget = BudgetTracker(10.0)

    verdict = CritiqueService(client, model="m").review(replace(_request(), budget=budget))

    assert verdict.passed is True
    assert budget.snapshot().spent == pytest.approx(0.03)
    assert budget.snapshot().reserved == pytest.approx(0.0)


def test_review_skips_the_call_when_the_budget_is_exhausted() -> None:
    client = FakeClient(CompletionResponse(content=json.dumps({"pass": False, "repairs": ["stitch rows"]})))
    budget = BudgetTracker(1e-7)
    service = CritiqueService(client, model="m")

    verdicts = [service.review(replace(_request(), budget=budget)) for _ in range(5)]

    assert client.requests == []
    assert all(v.passed for v in verdicts)
    assert all(v.explanations[0].startswith("critique_unavailable:budget_exceeded") for v in verdicts)
    assert budget.snapshot().spent == 0.0


def test_failed_review_releases_its_reservation() -> None:
    budget = BudgetTracker(10.0)
    service = CritiqueService(FakeClient(TransientServiceError("overloaded", status_code=503)), model="m")

    verdict = service.review(replace(_request(), budget=budget))

    assert verdict.passed is True
    assert budget.snapshot().spent == 0.0
    assert budget.snapshot().reserved == 0.0
