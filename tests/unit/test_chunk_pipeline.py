from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from catalogforge.application.services.chunk_pipeline_service import ChunkedExtractionService
from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.application.services.fallback_service import FallbackSelector
from catalogforge.application.services.invocation_service import LLMInvoker
from catalogforge.domain.models.chunk import Chunk, TokenUsage
from catalogforge.domain.models.page import Page
from catalogforge.infrastructure.chunking.page_chunker import PageChunker
from catalogforge.infrastructure.db.repos.chunk_cache_repo import ChunkCacheRepo
from catalogforge.infrastructure.extractors.pattern_registry import PatternRegistry
from catalogforge.infrastructure.llm.client import CompletionRequest, CompletionResponse


class CountingClient:
    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        with self._lock:
            self.calls += 1
        return CompletionResponse(content=json.dumps(_payload("ZX-900", 99.0)), usage=TokenUsage(total_tokens=400))


def _payload(code: str, price: float) -> dict[str, Any]:
    return {
        "groups": [
            {
                "title": "Reagents",
                "specs_headers": ["Code", "Name", "Price"],
                "variants": [{"code": code, "name": f"Reagent {code}", "price_value": price, "confidence": 0.9}],
            }
        ]
    }


def _priced_pages(count: int) -> list[Page]:
    return [Page(page_number=n, raw_text=f"AB-{100 + n} Glass beaker type {n} 1/PK {400 + n}") for n in range(1, count + 1)]


def _service(
    *,
    client: Any = None,
    cache: ChunkCacheRepo | None = None,
    max_usd: float = 10.0,
    pages_per_chunk: int = 2,
) -> ChunkedExtractionService:
    return ChunkedExtractionService(
        chunker=PageChunker(pages_per_chunk=pages_per_chunk),
        invoker=LLMInvoker(client, model="test-model", retry_delay_seconds=0.0, jitter_seconds=0.0, cache=cache),
        fallback=FallbackSelector(DeterministicExtractor(PatternRegistry.load())),
        max_usd=max_usd,
        concurrency=2,
    )


def test_canned_responses_flow_through_to_the_merged_catalog() -> None:
    def canned(chunk: Chunk) -> dict[str, Any]:
        return _payload(f"R-{chunk.ordinal + 1:03d}", 10.0 * (chunk.ordinal + 1))

    result = _service().run(_priced_pages(5), doc_id="acme", canned_responses=canned)

    assert result.status == "ok"
    assert [group.title for group in result.groups] == ["Reagents"]
    assert [v.code for v in result.groups[0].variants] == ["R-001", "R-002", "R-003"]
    assert [entry["chunk_id"] for entry in result.diagnostics["chunks"]] == [
        "acme-chunk-001",
        "acme-chunk-002",
        "acme-chunk-003",
    ]
    assert result.diagnostics["chunker"]["chunks_processed"] == 3
    assert result.diagnostics["qc"]["totals"]["llm_chunks"] == 3
    assert result.diagnostics["canonical_headers"] == ["Code", "Name", "Price"]


def test_unconfigured_llm_falls_back_to_rules() -> None:
    result = _service().run(_priced_pages(3), doc_id="acme")

    assert result.status == "ok"
    assert "fallback_triggered:llm_failed" in result.warnings
    assert result.diagnostics["qc"]["totals"]["fallback_chunks"] == 2
    assert result.diagnostics["qc"]["rows_via_fallback"] == 1.0
    assert {v.price_value for g in result.groups for v in g.variants} == {401.0, 402.0, 403.0}


def test_exhausted_budget_degrades_to_error_chunks() -> None:
    pages = [Page(page_number=n, raw_text="Contents and ordering notes") for n in range(1, 3)]

    result = _service(max_usd=0.0000001).run(
        pages,
        doc_id="acme",
        canned_responses=lambda chunk: _payload("R-001", 10.0),
    )

    assert result.status == "error"
    assert result.groups == []
    assert all(entry["source"] == "error" for entry in result.diagnostics["chunks"])
    assert all("BudgetExceededError" in entry["error"] for entry in result.diagnostics["chunks"])
    assert result.diagnostics["budget"]["spent_usd"] == 0.0


def test_price_conflicts_between_chunks_are_reported() -> None:
    def canned(chunk: Chunk) -> dict[str, Any]:
        return _payload("R-001", 100.0 if chunk.ordinal == 0 else 120.0)

    result = _service().run(_priced_pages(4), doc_id="acme", canned_responses=canned)

    assert "price_conflicts:1" in result.warnings
    conflict = result.diagnostics["price_conflicts"][0]
    assert conflict["chunks"] == ["acme-chunk-001", "acme-chunk-002"]
    assert conflict["values"] == [100.0, 120.0]


def test_second_run_is_served_from_the_cache(tmp_path: Path) -> None:
    cache = ChunkCacheRepo(tmp_path / "cache.db")
    client = CountingClient()
    pages = _priced_pages(4)

    first = _service(client=client, cache=cache).run(pages, doc_id="acme")
    second = _service(client=client, cache=cache).run(pages, doc_id="acme")

    assert client.calls == 2
    assert first.diagnostics["budget"]["spent_usd"] > 0
    assert second.diagnostics["budget"]["spent_usd"] == 0.0
    assert second.diagnostics["qc"]["totals"]["cached_chunks"] == 2
    assert [g.to_dict() for g in first.groups] == [g.to_dict() for g in second.groups]


def test_chunk_namespace_keeps_chunk_ids_apart() -> None:
    result = _service().run(_priced_pages(2), doc_id="acme", chunk_namespace="acme-w02")

    assert [entry["chunk_id"] for entry in result.diagnostics["chunks"]] == ["acme-w02-chunk-001"]


def test_document_without_pages_is_partial() -> None:
    result = _service().run([], doc_id="acme")

    assert result.status == "partial"
    assert result.warnings == ["chunk_pipeline_no_pages"]
    assert result.groups == []


class LockedCache:
    def get(self, chunk_id: str, content_hash: str, model: str | None = None) -> Any:
        raise sqlite3.OperationalError("database is locked")

    def put(self, chunk_id: str, content_hash: str, model: str, payload: dict[str, Any]) -> None:
        raise sqlite3.OperationalError("database is locked")


def test_unexpected_invocation_errors_fall_back_per_chunk() -> None:
    result = _service(cache=LockedCache()).run(
        _priced_pages(6),
        doc_id="acme",
        canned_responses=lambda chunk: _payload("R-001", 10.0),
    )

    assert len(result.diagnostics["chunks"]) == 3
    assert all(entry["source"] == "fallback" for entry in result.diagnostics["chunks"])
    assert all(entry["error"] == "OperationalError: database is locked" for entry in result.diagnostics["chunks"])
    assert result.status == "ok"


def test_crashing_fallback_only_loses_its_own_chunk() -> None:
    class CrashingExtractor:
        def extract(self, pages: Any, options: Any = None) -> Any:
            raise RuntimeError("segment list is None")

    service = ChunkedExtractionService(
        chunker=PageChunker(pages_per_chunk=2),
        invoker=LLMInvoker(None, model="test-model"),
        fallback=FallbackSelector(CrashingExtractor()),
        concurrency=2,
    )

    result = service.run(_priced_pages(4), doc_id="acme")

    assert result.status == "error"
    assert result.groups == []
    assert [entry["source"] for entry in result.diagnostics["chunks"]] == ["error", "error"]
    assert "chunk_failed:RuntimeError: segment list is None" in result.warnings
