from __future__ import annotations

from typing import Any

from catalogforge.core.time import now_utc_iso
from catalogforge.domain.models.catalog import Group, PriceConflict
from catalogforge.domain.models.chunk import SOURCE_ERROR, SOURCE_FALLBACK, SOURCE_LLM, ChunkResult


def build_qc_report(
    *,
    doc_id: str | None,
    chunk_results: list[ChunkResult],
    groups: list[Group],
    price_conflicts: list[PriceConflict],
) -> dict[str, Any]:
    """Quality summary of one chunked run: sources, confidence and price ambiguities."""
    variants = [variant for group in groups for variant in group.variants]
    confidences = [float(variant.confidence or 0.0) for variant in variants]
    fallback_variants = sum(
        len(group.variants)
        for result in chunk_results
        if result.source == SOURCE_FALLBACK
        for group in result.groups
    )
    return {
        "doc_id": doc_id,
        "generated_at": now_utc_iso(),
        "totals": {
            "chunks": len(chunk_results),
            "groups": len(groups),
            "variants": len(variants),
            "llm_chunks": sum(1 for result in chunk_results if result.source == SOURCE_LLM),
            "fallback_chunks": sum(1 for result in chunk_results if result.source == SOURCE_FALLBACK),
            "error_chunks": sum(1 for result in chunk_results if result.source == SOURCE_ERROR),
            "cached_chunks": sum(
                1 for result in chunk_results if result.invocation is not None and result.invocation.from_cache
            ),
        },
        "confidence": {"mean": round(sum(confidences) / len(confidences), 4) if confidences else 0.0},
        "rows_via_fallback": round(fallback_variants / len(variants), 4) if variants else 0.0,
        "price_ambiguities": [conflict.to_dict() for conflict in price_conflicts],
        "chunks": [result.summary() for result in chunk_results],
    }
