from __future__ import annotations

from catalogforge.application.services.merge_service import ChunkMerger, MergeInput, normalise_header
from catalogforge.domain.models.catalog import Group, Provenance, Variant


def _input(chunk_id: str, *groups: Group) -> MergeInput:
    return MergeInput(groups=list(groups), provenance=Provenance(chunk_id=chunk_id, source="llm"))


def _buffers(price: float, *, confidence: float = 0.9, pack: str | None = None, headers: list[str] | None = None) -> Group:
    return Group(
        title="Buffer Solutions",
        specs_headers=headers or [],
        variants=[Variant(code="3031-915", name="Calibration Buffer", pack=pack, price_value=price, confidence=confidence)],
    )


def test_differing_prices_record_one_conflict_with_both_chunks() -> None:
    merged = ChunkMerger().merge([_input("acme-chunk-001", _buffers(100.0)), _input("acme-chunk-002", _buffers(120.0))])

    assert len(merged.groups) == 1
    assert len(merged.groups[0].variants) == 1
    assert len(merged.price_conflicts) == 1
    conflict = merged.price_conflicts[0]
    assert conflict.chunk_ids == ("acme-chunk-001", "acme-chunk-002")
    assert conflict.values == (100.0, 120.0)
    # Equal rank keeps the earlier record.
    assert merged.groups[0].variants[0].price_value == 100.0
    assert merged.groups[0].variants[0].provenance.chunk_id == "acme-chunk-001"


def test_higher_ranked_record_wins_fields_and_provenance() -> None:
    merged = ChunkMerger().merge(
        [
            _input("acme-chunk-001", _buffers(100.0, confidence=0.6)),
            _input("acme-chunk-002", _buffers(120.0, confidence=0.95)),
        ]
    )

    variant = merged.groups[0].variants[0]
    assert variant.price_value == 120.0
    assert variant.confidence == 0.95
    assert variant.provenance.chunk_id == "acme-chunk-002"


def test_lower_ranked_record_still_fills_missing_fields() -> None:
    merged = ChunkMerger().merge(
        [
            _input("acme-chunk-001", _buffers(100.0, confidence=0.9)),
            _input("acme-chunk-002", _buffers(100.0, confidence=0.5, pack="2/PK")),
        ]
    )

    variant = merged.groups[0].variants[0]
    assert variant.pack == "2/PK"
    assert "pack" in variant.fields_present
    assert merged.price_conflicts == []


def test_headers_are_unioned_by_normalised_text() -> None:
    merged = ChunkMerger().merge(
        [
            _input("acme-chunk-001", _buffers(100.0, headers=["Cat No", "Price (INR)"])),
            _input("acme-chunk-002", _buffers(100.0, headers=["cat  no", "Pack"])),
        ]
    )

    assert merged.groups[0].specs_headers == ["Cat No", "Price (INR)", "Pack"]
    assert merged.canonical_headers == ["Cat No", "Price (INR)", "Pack"]
    assert normalise_header(" Price (INR) ") == "price inr"


def test_merging_the_same_input_twice_changes_nothing() -> None:
    once = ChunkMerger().merge([_input("acme-chunk-001", _buffers(100.0))])
    twice = ChunkMerger().merge([_input("acme-chunk-001", _buffers(100.0)), _input("acme-chunk-001", _buffers(100.0))])

    assert [g.to_dict() for g in once.groups] == [g.to_dict() for g in twice.groups]
    assert twice.price_conflicts == []


def test_merge_does_not_touch_its_inputs() -> None:
    group = _buffers(100.0)

    merged = ChunkMerger().merge([_input("acme-chunk-001", group)])

    assert group.variants[0].provenance is None
    assert merged.groups[0].variants[0] is not group.variants[0]
    assert merged.provenance_map() == [
        {
            "group": "Buffer Solutions",
            "key": "code:3031 915",
            "provenance": {"chunk_id": "acme-chunk-001", "source": "llm"},
        }
    ]


def test_window_provenance_is_layered_over_chunk_provenance() -> None:
    variant = Variant(code="AB-100", price_value=450.0, provenance=Provenance(chunk_id="acme-w01-chunk-001", source="llm"))
    window = Provenance(source="chunked", window_index=0, window_page_start=1, window_page_end=20)

    merged = ChunkMerger().merge([MergeInput(groups=[Group(title="Glassware", variants=[variant])], provenance=window)])

    stamped = merged.groups[0].variants[0].provenance
    assert stamped.chunk_id == "acme-w01-chunk-001"
    assert stamped.source == "llm"
    assert (stamped.window_index, stamped.window_page_start, stamped.window_page_end) == (0, 1, 20)


def _window(index: int, start: int, end: int, *groups: Group) -> MergeInput:
    return MergeInput(
        groups=list(groups),
        provenance=Provenance(
            source="deterministic",
            page_start=start,
            page_end=end,
            window_index=index,
            window_page_start=start,
            window_page_end=end,
        ),
    )


def test_cross_window_conflicts_name_their_windows() -> None:
    merged = ChunkMerger().merge(
        [
            _window(0, 1, 20, _buffers(100.0)),
            _window(1, 21, 40, _buffers(120.0)),
            _window(2, 41, 45, _buffers(120.0)),
        ]
    )

    assert [conflict.window_indexes for conflict in merged.price_conflicts] == [(0, 1), (0, 2)]
    first = merged.price_conflicts[0].to_dict()
    assert first["chunks"] == [None, None]
    assert first["windows"] == [0, 1]
    assert first["pages"] == [[1, 20], [21, 40]]
    assert first["values"] == [100.0, 120.0]
