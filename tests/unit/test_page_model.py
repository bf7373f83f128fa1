from __future__ import annotations

import pytest

from catalogforge.core.errors import PageModelError
from catalogforge.domain.models.page import ImageSegment, TableSegment, TextSegment, pages_from_payload


def test_pages_from_payload_accepts_flat_segments_and_parser_arrays() -> None:
    pages = pages_from_payload(
        {
            "pages": [
                {
                    "page_number": 3,
                    "raw_text": "AB-100 Beaker 450",
                    "segments": [{"kind": "text", "text": "Glassware"}],
                },
                {
                    "pageNumber": 4,
                    "textBlocks": [{"id": "b1", "text": "Flasks"}],
                    "tables": [{"header": ["Cat No", "Price"], "rows": [["AB-200", 900]], "sourceRows": ["AB-200 900"]}],
                    "images": [{"caption": "Figure 2: Flask"}],
                },
            ]
        }
    )

    assert [page.page_number for page in pages] == [3, 4]
    assert isinstance(pages[0].segments[0], TextSegment)
    assert pages[0].segments[0].id == "p3-text1"
    table = pages[1].table_segments[0]
    assert isinstance(table, TableSegment)
    assert table.rows == (("AB-200", "900"),)
    assert table.source_rows == ("AB-200 900",)
    assert isinstance(pages[1].segments[2], ImageSegment)


def test_missing_page_number_falls_back_to_position() -> None:
    pages = pages_from_payload([{"raw_text": "a"}, {"raw_text": "b"}])

    assert [page.page_number for page in pages] == [1, 2]


def test_invalid_page_models_are_rejected() -> None:
    with pytest.raises(PageModelError):
        pages_from_payload({"document": []})
    with pytest.raises(PageModelError):
        pages_from_payload([{"page_number": "first"}])
    with pytest.raises(PageModelError):
        pages_from_payload([{"segments": [{"kind": "chart"}]}])


def test_to_dict_round_trips_through_from_dict() -> None:
    pages = pages_from_payload([{"page_number": 1, "segments": [{"kind": "table", "header": ["A"], "rows": [["1"]]}]}])

    assert pages_from_payload([pages[0].to_dict()]) == pages
