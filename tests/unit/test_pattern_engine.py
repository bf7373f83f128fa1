from __future__ import annotations

import json
from pathlib import Path

from catalogforge.domain.models.page import Page, TableSegment
from catalogforge.infrastructure.extractors.lines import layout_lines
from catalogforge.infrastructure.extractors.pattern_engine import PatternEngine, split_columns
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry


def _table_page() -> Page:
    return Page(
        page_number=5,
        segments=(
            TableSegment(
                id="p5-table1",
                header=("Cat No", "Description", "Pack", "Price (INR)"),
                rows=(
                    ("AB-100", "Beaker 250ml", "1/PK", "450"),
                    ("AB-200", "Flask 500ml", "2/PK", "1,250.00"),
                ),
            ),
        ),
    )


def test_bundled_registry_loads_every_pattern_widest_first() -> None:
    registry = PatternRegistry.load()

    assert registry.errors == []
    assert registry.ids() == [
        "code_name_pack_hsn_gst_price",
        "code_cas_name_pack_price",
        "code_name_pack_price",
        "name_pack_price",
    ]


def test_registry_reports_bad_files_without_failing(tmp_path: Path) -> None:
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "unknown_role.json").write_text(
        json.dumps({"id": "unknown_role", "columns": [{"role": "colour"}]}),
        encoding="utf-8",
    )
    (tmp_path / "simple.json").write_text(
        json.dumps({"id": "simple", "columns": [{"role": "name"}, {"role": "price"}]}),
        encoding="utf-8",
    )

    registry = PatternRegistry.load(tmp_path)

    assert registry.ids() == ["simple"]
    assert len(registry.errors) == 2


def test_ordered_puts_preferred_patterns_first() -> None:
    registry = PatternRegistry.load()

    ordered = registry.ordered(("name_pack_price", "missing", "code_name_pack_price"))

    assert [pattern.id for pattern in ordered][:3] == [
        "name_pack_price",
        "code_name_pack_price",
        "code_name_pack_hsn_gst_price",
    ]


def test_match_reads_table_rows_with_the_first_fitting_pattern() -> None:
    engine = PatternEngine(PatternRegistry.load())

    outcome = engine.match(layout_lines([_table_page()]), doc_id="acme")

    assert outcome.diagnostics["matched_pattern"] == "code_name_pack_price"
    group = outcome.groups[0]
    assert (group.page_start, group.page_end) == (5, 5)
    assert [(v.code, v.name, v.pack, v.price_value) for v in group.variants] == [
        ("AB-100", "Beaker 250ml", "1/PK", 450.0),
        ("AB-200", "Flask 500ml", "2/PK", 1250.0),
    ]
    reasons = {attempt["pattern_id"]: attempt["reason"] for attempt in outcome.diagnostics["attempts"]}
    assert reasons["code_name_pack_hsn_gst_price"] == "header_not_found"


def test_match_tries_preferred_pattern_first() -> None:
    engine = PatternEngine(PatternRegistry.load())

    outcome = engine.match(layout_lines([_table_page()]), preferred_patterns=("name_pack_price",))

    assert outcome.diagnostics["matched_pattern"] == "name_pack_price"


def test_match_without_header_reports_no_match() -> None:
    engine = PatternEngine(PatternRegistry.load())
    page = Page(page_number=1, raw_text="Terms and conditions apply\nOrders ship within 3 days")

    outcome = engine.match(layout_lines([page]))

    assert outcome.groups == []
    assert outcome.warnings == ["pattern_registry_no_match"]


def test_split_columns_needs_wide_gaps() -> None:
    assert split_columns("AB-100    Beaker 250ml    450") == ["AB-100", "Beaker 250ml", "450"]
    assert split_columns("single spaced line") == ["single spaced line"]
