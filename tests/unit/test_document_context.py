from __future__ import annotations

from catalogforge.application.services.document_context import DocumentContext
from catalogforge.domain.models.catalog import Group, Variant
from catalogforge.domain.models.chunk import ChunkResult
from catalogforge.domain.models.page import Page
from catalogforge.infrastructure.chunking.page_chunker import PageChunker
from catalogforge.infrastructure.llm.prompts import FIRST_CHUNK_CONTEXT


def _result(ordinal_pages: int, *groups: Group, source: str = "llm") -> ChunkResult:
    pages = [Page(page_number=n) for n in range(1, ordinal_pages + 1)]
    chunk = PageChunker(pages_per_chunk=ordinal_pages).chunk_pages(pages, doc_id="acme")[0]
    return ChunkResult(chunk=chunk, source=source, groups=list(groups))


def test_empty_context_announces_the_first_chunk() -> None:
    assert DocumentContext().format_for_prompt() == FIRST_CHUNK_CONTEXT


def test_context_accumulates_columns_codes_brands_and_summaries() -> None:
    context = DocumentContext()
    group = Group(
        title="Buffer Solutions",
        specs_headers=["Cat No", "Price"],
        variants=[Variant(code="3031-915", name="Buffer", extras={"brand": "Hanna"})],
    )

    context.update(_result(3, group))
    context.update(_result(1, source="fallback"))

    snapshot = context.snapshot()
    assert snapshot.columns == ("cat no", "price")
    assert snapshot.codes == ("3031-915",)
    assert snapshot.brands == ("hanna",)
    assert snapshot.categories == ("buffer solutions",)
    assert len(snapshot.summaries) == 2

    prompt = context.format_for_prompt()
    assert "Columns so far: cat no, price" in prompt
    assert "Known variant codes: 3031-915" in prompt
    assert "Brand hints: hanna" in prompt
    assert "acme-chunk-001 [1-3] -> 1 groups via llm" in prompt
    assert "acme-chunk-001 [1] -> 0 groups via fallback" in prompt


def test_only_recent_summaries_are_kept_in_snapshots() -> None:
    context = DocumentContext()
    for _ in range(7):
        context.update(_result(1))

    assert len(context.snapshot().summaries) == 5
