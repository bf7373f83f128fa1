from __future__ import annotations

from catalogforge.application.services.repair_service import (
    apply_repair_plan,
    hint_columns,
    parse_repair_directives,
    stitch_table,
)
from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page, TableSegment, TextSegment


def test_parse_repair_directives_reads_each_kind() -> None:
    plan = parse_repair_directives(
        [
            "Re-segment the text blocks",
            "column 3 -> price",
            "stitch wrapped rows",
            "use pattern name_pack_price",
            "fall back to price anchored recovery",
            "column 9 -> colour",
            "Check the totals",
            None,
            "",
        ]
    )

    assert plan.resegment
    assert plan.stitch_rows
    assert plan.force_price_anchored
    assert plan.column_hints == {2: "price"}
    assert plan.preferred_patterns == ("name_pack_price",)
    assert plan.unrecognised == ("column 9 -> colour", "Check the totals")
    assert {"kind": "column_hint", "directive": "column 3 -> price", "column": 3, "role": "price"} in plan.to_dicts()


def test_pattern_hint_alone_does_not_force_recovery() -> None:
    plan = parse_repair_directives(["use pattern code_name_pack_price"])

    assert plan.preferred_patterns == ("code_name_pack_price",)
    assert not plan.force_price_anchored


def test_plan_options_layer_over_base_options() -> None:
    base = ExtractionOptions(doc_id="acme", preferred_patterns=("code_name_pack_price",), minimum_confidence=0.7)

    forced = parse_repair_directives(["force price anchored extraction"]).extraction_options(base)
    preferred = parse_repair_directives(["try pattern name_pack_price"]).extraction_options(base)

    assert forced.force_price_anchored is True
    assert forced.preferred_patterns == ("code_name_pack_price",)
    assert forced.minimum_confidence == 0.7
    assert preferred.preferred_patterns == ("name_pack_price",)
    assert preferred.force_price_anchored is False


def test_stitch_table_folds_short_rows_into_the_row_above() -> None:
    table = TableSegment(
        id="t1",
        header=("Cat No", "Description", "Price"),
        rows=(("AB-100", "Glass beaker", "450"), ("", "heat resistant"), ("AB-200", "Flask", "900")),
    )

    stitched = stitch_table(table)

    assert stitched.rows == (("AB-100", "Glass beaker heat resistant", "450"), ("AB-200", "Flask", "900"))
    assert len(table.rows) == 3


def test_hint_columns_rewrites_header_cells() -> None:
    table = TableSegment(id="t1", header=("Item", "Name", "Cost"), rows=(("AB-100", "Beaker", "450"),))

    hinted = hint_columns(table, {0: "code", 2: "price", 7: "notes"})

    assert hinted.header == ("Cat No", "Name", "Price")


def test_apply_repair_plan_resegments_before_hinting() -> None:
    page = Page(
        page_number=1,
        segments=(TextSegment(id="p1-text1", text="Item Name Cost AB-100 Beaker 450"),),
        raw_text="Item    Name    Cost\nAB-100    Beaker    450",
    )
    plan = parse_repair_directives(["resegment the page", "column 3 -> price"])

    repaired = apply_repair_plan([page], plan)

    table = repaired[0].table_segments[0]
    assert table.header == ("Item", "Name", "Price")
    assert table.rows == (("AB-100", "Beaker", "450"),)
    assert page.table_segments == []
