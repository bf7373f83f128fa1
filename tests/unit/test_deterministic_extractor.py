from __future__ import annotations

import pytest

from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.core.errors import ExtractorFailureError
from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page, TableSegment
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry
from catalogforge.infrastructure.extractors.price_anchored import RECOVERY_GROUP_TITLE


def _table_page() -> Page:
    return Page(
        page_number=1,
        segments=(
            TableSegment(
                id="p1-table1",
                header=("Cat No", "Description", "Pack", "Price"),
                rows=(("AB-100", "Beaker 250ml", "1/PK", "450"), ("AB-200", "Flask 500ml", "2/PK", "1,250.00")),
            ),
        ),
    )


def test_patterns_win_when_a_header_matches() -> None:
    outcome = DeterministicExtractor(PatternRegistry.load()).extract([_table_page()])

    assert outcome.warnings == []
    assert outcome.groups[0].title == "Catalogue"
    assert "price_anchored" not in outcome.diagnostics


def test_price_anchored_recovery_runs_when_patterns_find_nothing() -> None:
    page = Page(page_number=7, raw_text="3031-915 Calibration Buffer Solution 2/PK 12345678 18% 250")

    outcome = DeterministicExtractor(PatternRegistry.load()).extract([page], ExtractionOptions(doc_id="acme"))

    assert "pattern_registry_no_match" in outcome.warnings
    assert outcome.groups[0].title == RECOVERY_GROUP_TITLE
    assert outcome.groups[0].variants[0].price_value == 250.0


def test_forced_recovery_replaces_pattern_output() -> None:
    options = ExtractionOptions(force_price_anchored=True)

    outcome = DeterministicExtractor(PatternRegistry.load()).extract([_table_page()], options)

    assert outcome.groups[0].title == RECOVERY_GROUP_TITLE
    assert sorted(v.price_value for v in outcome.groups[0].variants) == [450.0, 1250.0]
    assert outcome.diagnostics["force_price_anchored"] is True


def test_empty_registry_is_reported() -> None:
    outcome = DeterministicExtractor(PatternRegistry()).extract([Page(page_number=1, raw_text="no prices")])

    assert outcome.groups == []
    assert outcome.warnings == ["pattern_registry_empty", "price_anchored_no_match"]


def test_unexpected_failures_surface_as_extractor_failure() -> None:
    class BrokenEngine:
        def match(self, *args: object, **kwargs: object) -> object:
            raise ValueError("bad column layout")

    extractor = DeterministicExtractor(PatternRegistry.load())
    extractor.engine = BrokenEngine()

    with pytest.raises(ExtractorFailureError):
        extractor.extract([_table_page()])


def test_attribute_errors_are_wrapped_too() -> None:
    class BrokenEngine:
        def match(self, *args: object, **kwargs: object) -> object:
            raise AttributeError("'NoneType' object has no attribute 'rows'")

    extractor = DeterministicExtractor(PatternRegistry.load())
    extractor.engine = BrokenEngine()

    with pytest.raises(ExtractorFailureError, match="NoneType"):
        extractor.extract([_table_page()])
