from __future__ import annotations

from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.application.services.fallback_service import FallbackSelector, fallback_reason
from catalogforge.core.errors import CompletionServiceError, ExtractorFailureError
from catalogforge.domain.models.catalog import Group, Variant
from catalogforge.domain.models.chunk import Chunk, InvocationResult, TokenUsage
from catalogforge.domain.models.page import Page, TableSegment
from catalogforge.infrastructure.chunking.page_chunker import PageChunker
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry


def _chunk(*pages: Page) -> Chunk:
    return PageChunker().chunk_pages(list(pages), doc_id="acme")[0]


def _table_page() -> Page:
    return Page(
        page_number=1,
        segments=(
            TableSegment(
                id="p1-table1",
                header=("Cat No", "Description", "Pack", "Price"),
                rows=(("AB-100", "Beaker 250ml", "1/PK", "450"),),
            ),
        ),
    )


def _invocation(chunk: Chunk, groups: list[Group], warnings: list[str] | None = None) -> InvocationResult:
    return InvocationResult(
        chunk_id=chunk.chunk_id,
        content_hash=chunk.content_hash,
        model="test-model",
        groups=groups,
        warnings=warnings or [],
        notes=[],
        usage=TokenUsage(),
        cost_usd=0.0,
        estimated_cost_usd=0.0,
        retries=0,
    )


def _llm_group() -> Group:
    return Group(title="Glassware", variants=[Variant(code="AB-100", name="Beaker", price_value=450.0, confidence=0.9)])


def test_fallback_reason_classifies_llm_outcomes() -> None:
    chunk = _chunk(_table_page())

    assert fallback_reason(None, CompletionServiceError("boom")) == "llm_failed"
    assert fallback_reason(_invocation(chunk, []), None) == "llm_no_groups"
    assert fallback_reason(_invocation(chunk, [_llm_group()], ["Low-Confidence rows"]), None) == "llm_low_confidence"
    assert fallback_reason(_invocation(chunk, [_llm_group()]), None) is None


def test_llm_output_stands_when_it_is_usable() -> None:
    chunk = _chunk(_table_page())
    selector = FallbackSelector(DeterministicExtractor(PatternRegistry.load()))

    result = selector.select(chunk=chunk, invocation=_invocation(chunk, [_llm_group()]))

    assert result.source == "llm"
    assert result.groups[0].title == "Glassware"
    assert result.fallback_diagnostics is None


def test_rules_replace_empty_llm_output() -> None:
    chunk = _chunk(_table_page())
    selector = FallbackSelector(DeterministicExtractor(PatternRegistry.load()))

    result = selector.select(chunk=chunk, invocation=_invocation(chunk, []))

    assert result.source == "fallback"
    assert "fallback_triggered:llm_no_groups" in result.warnings
    assert result.groups[0].variants[0].code == "AB-100"
    assert result.fallback_diagnostics is not None


def test_failed_llm_with_nothing_recoverable_is_an_error_chunk() -> None:
    chunk = _chunk(Page(page_number=1, raw_text="Index of sections"))
    selector = FallbackSelector(DeterministicExtractor(PatternRegistry.load()))

    result = selector.select(chunk=chunk, invocation=None, error=CompletionServiceError("llm_unconfigured"))

    assert result.source == "error"
    assert result.groups == []
    assert result.error == "CompletionServiceError: llm_unconfigured"
    assert result.warnings[0] == "fallback_triggered:llm_failed"


def test_extractor_failure_drops_the_chunk_groups() -> None:
    class FailingExtractor:
        def extract(self, pages: object, options: object = None) -> object:
            raise ExtractorFailureError("pattern engine crashed")

    chunk = _chunk(_table_page())
    invocation = _invocation(chunk, [_llm_group()], ["low_confidence"])

    result = FallbackSelector(FailingExtractor()).select(chunk=chunk, invocation=invocation)

    assert result.source == "error"
    assert result.groups == []
    assert result.invocation is invocation
    assert result.warnings == [
        "low_confidence",
        "fallback_triggered:llm_low_confidence",
        "fallback_failed:pattern engine crashed",
    ]
