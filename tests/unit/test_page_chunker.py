from __future__ import annotations

import pytest

from catalogforge.core.errors import ValidationError
from catalogforge.domain.models.page import Page, TextSegment
from catalogforge.infrastructure.chunking.page_chunker import PageChunker, chunk_content_hash


def _pages(count: int) -> list[Page]:
    return [
        Page(page_number=n, segments=(TextSegment(id=f"p{n}-text1", text=f"Item {n}    {n * 10}"),), raw_text=f"page {n}")
        for n in range(1, count + 1)
    ]


def test_chunk_pages_splits_into_contiguous_ranges() -> None:
    chunks = PageChunker(pages_per_chunk=10).chunk_pages(_pages(23), doc_id="acme")

    assert [chunk.page_range for chunk in chunks] == [(1, 10), (11, 20), (21, 23)]
    assert [chunk.chunk_id for chunk in chunks] == ["acme-chunk-001", "acme-chunk-002", "acme-chunk-003"]
    assert [chunk.ordinal for chunk in chunks] == [0, 1, 2]
    assert sum(len(chunk.pages) for chunk in chunks) == 23


def test_chunk_pages_is_deterministic() -> None:
    chunker = PageChunker(pages_per_chunk=4)
    first = chunker.chunk_pages(_pages(9), doc_id="acme")
    second = chunker.chunk_pages(_pages(9), doc_id="acme")

    assert [(c.chunk_id, c.content_hash) for c in first] == [(c.chunk_id, c.content_hash) for c in second]


def test_chunk_pages_empty_document_has_no_chunks() -> None:
    assert PageChunker().chunk_pages([], doc_id="acme") == []


def test_chunk_id_uses_doc_prefix_fallback() -> None:
    chunks = PageChunker(pages_per_chunk=5).chunk_pages(_pages(3))

    assert chunks[0].chunk_id == "doc-chunk-001"


def test_content_hash_changes_with_page_content() -> None:
    pages = _pages(2)
    edited = [pages[0], Page(page_number=2, segments=pages[1].segments, raw_text="page 2 revised")]

    assert chunk_content_hash(pages) != chunk_content_hash(edited)
    assert chunk_content_hash(pages) == chunk_content_hash(_pages(2))


def test_rechunk_stable_keeps_ids_for_unchanged_ranges() -> None:
    chunker = PageChunker(pages_per_chunk=10)
    previous = chunker.chunk_pages(_pages(23), doc_id="old-doc")

    rechunked = chunker.rechunk_stable(previous, _pages(25), doc_id="new-doc")

    assert rechunked[0].chunk_id == previous[0].chunk_id
    assert rechunked[1].chunk_id == previous[1].chunk_id
    # The last range grew from 21-23 to 21-25, so it gets a fresh id.
    assert rechunked[2].page_range == (21, 25)
    assert rechunked[2].chunk_id == "new-doc-chunk-003"


def test_chunker_rejects_non_positive_chunk_size() -> None:
    with pytest.raises(ValidationError):
        PageChunker(pages_per_chunk=0)
