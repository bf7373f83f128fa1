from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable

from catalogforge.application.services.budget_service import BudgetTracker
from catalogforge.application.services.document_context import DocumentContext
from catalogforge.application.services.fallback_service import FallbackSelector
from catalogforge.application.services.invocation_service import LLMInvoker, RenderedPrompt
from catalogforge.application.services.merge_service import ChunkMerger
from catalogforge.application.services.qc_service import build_qc_report
from catalogforge.core.errors import CatalogForgeError, CompletionServiceError
from catalogforge.domain.models.chunk import SOURCE_ERROR, Chunk, ChunkResult, InvocationResult
from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page
from catalogforge.domain.models.run import STATUS_ERROR, STATUS_OK, STATUS_PARTIAL, DocumentResult
from catalogforge.domain.validation import validate_groups
from catalogforge.infrastructure.chunking.page_chunker import PageChunker
from catalogforge.infrastructure.llm.prompts import build_chunk_prompt

logger = logging.getLogger(__name__)

CannedResponses = Callable[[Chunk], "str | dict[str, Any] | None"]


def failed_chunk_result(chunk: Chunk, exc: BaseException) -> ChunkResult:
    """A chunk that could not be processed at all: no groups, error recorded."""
    detail = f"{type(exc).__name__}: {exc}"
    return ChunkResult(chunk=chunk, source=SOURCE_ERROR, warnings=[f"chunk_failed:{detail}"], error=detail)


class ChunkedExtractionService:
    """Chunk a document, extract every chunk (LLM first, rules as fallback) and merge."""

    def __init__(
        self,
        *,
        chunker: PageChunker,
        invoker: LLMInvoker,
        fallback: FallbackSelector,
        merger: ChunkMerger | None = None,
        max_usd: float = 10.0,
        concurrency: int = 2,
    ) -> None:
        self.chunker = chunker
        self.invoker = invoker
        self.fallback = fallback
        self.merger = merger or ChunkMerger()
        self.max_usd = max_usd
        self.concurrency = max(1, concurrency)

    def run(
        self,
        pages: list[Page],
        *,
        doc_id: str | None = None,
        options: ExtractionOptions | None = None,
        budget: BudgetTracker | None = None,
        canned_responses: CannedResponses | None = None,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
        chunk_namespace: str | None = None,
    ) -> DocumentResult:
        """Extract one document.

        ``chunk_namespace`` replaces the document id when deriving chunk ids,
        so callers running several page ranges of one document keep their
        chunk ids (and cache entries) apart.
        """
        options = replace(options or ExtractionOptions(), doc_id=doc_id)
        budget = budget or BudgetTracker(self.max_usd)

        if not pages:
            logger.warning("Document %s has no pages; nothing to extract", doc_id)
            return DocumentResult(
                doc_id=doc_id,
                status=STATUS_PARTIAL,
                warnings=["chunk_pipeline_no_pages"],
                diagnostics={"budget": budget.snapshot().to_dict(), "chunks": []},
            )

        chunks = self.chunker.chunk_pages(pages, doc_id=chunk_namespace or doc_id)
        context = DocumentContext()
        results: list[ChunkResult | None] = [None] * len(chunks)
        next_index = 0
        index_lock = threading.Lock()

        def claim() -> int | None:
            nonlocal next_index
            with index_lock:
                if next_index >= len(chunks):
                    return None
                index = next_index
                next_index += 1
                return index

        def worker() -> None:
            while True:
                index = claim()
                if index is None:
                    return
                try:
                    result = self._process_chunk(
                        chunks[index],
                        doc_id=doc_id,
                        context=context,
                        options=options,
                        budget=budget,
                        canned_responses=canned_responses,
                        cancel_event=cancel_event,
                        deadline=deadline,
                    )
                except Exception as exc:
                    logger.exception("Chunk %s failed; it contributes no groups", chunks[index].chunk_id)
                    result = failed_chunk_result(chunks[index], exc)
                results[index] = result
                context.update(result)

        worker_count = min(self.concurrency, len(chunks))
        logger.info(
            "Extracting %s chunk(s) of document %s with %s worker(s)", len(chunks), doc_id, worker_count
        )
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="chunk") as executor:
            futures = [executor.submit(worker) for _ in range(worker_count)]
            for future in futures:
                future.result()

        chunk_results = [result for result in results if result is not None]
        return self._assemble(doc_id, chunk_results, budget, worker_count)

    def _process_chunk(
        self,
        chunk: Chunk,
        *,
        doc_id: str | None,
        context: DocumentContext,
        options: ExtractionOptions,
        budget: BudgetTracker,
        canned_responses: CannedResponses | None,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> ChunkResult:
        system, user = build_chunk_prompt(doc_id=doc_id, chunk=chunk, context=context.format_for_prompt())
        canned = canned_responses(chunk) if canned_responses is not None else None

        invocation: InvocationResult | None = None
        error: Exception | None = None
        if canned is None and not self.invoker.configured:
            error = CompletionServiceError("llm_unconfigured")
        else:
            try:
                invocation = self.invoker.invoke(
                    chunk=chunk,
                    prompt=RenderedPrompt(system=system, user=user),
                    budget=budget,
                    canned_response=canned,
                    cancel_event=cancel_event,
                    deadline=deadline,
                )
            except CatalogForgeError as exc:
                logger.warning("LLM extraction failed for chunk %s: %s", chunk.chunk_id, exc)
                error = exc
            except Exception as exc:
                logger.exception("Unexpected LLM failure for chunk %s", chunk.chunk_id)
                error = exc

        result = self.fallback.select(chunk=chunk, invocation=invocation, error=error, options=options)
        logger.debug(
            "Chunk %s (pages %s-%s) resolved via %s with %s group(s)",
            chunk.chunk_id,
            chunk.page_start,
            chunk.page_end,
            result.source,
            len(result.groups),
        )
        return result

    def _assemble(
        self,
        doc_id: str | None,
        chunk_results: list[ChunkResult],
        budget: BudgetTracker,
        worker_count: int,
    ) -> DocumentResult:
        merged = self.merger.merge_chunk_results(chunk_results)
        qc_report = build_qc_report(
            doc_id=doc_id,
            chunk_results=chunk_results,
            groups=merged.groups,
            price_conflicts=merged.price_conflicts,
        )

        if chunk_results and all(result.source == SOURCE_ERROR for result in chunk_results):
            status = STATUS_ERROR
        elif merged.groups:
            status = STATUS_OK
        else:
            status = STATUS_PARTIAL

        warnings = [warning for result in chunk_results for warning in result.warnings]
        if merged.price_conflicts:
            warnings.append(f"price_conflicts:{len(merged.price_conflicts)}")

        diagnostics: dict[str, Any] = {
            "chunker": {
                "chunks_processed": len(chunk_results),
                "pages_per_chunk": self.chunker.pages_per_chunk,
                "concurrency": worker_count,
                "estimated_spend_usd": round(
                    sum(r.invocation.estimated_cost_usd for r in chunk_results if r.invocation), 6
                ),
                "actual_spend_usd": round(sum(r.cost_usd for r in chunk_results), 6),
            },
            "budget": budget.snapshot().to_dict(),
            "chunks": [result.summary() for result in chunk_results],
            "price_conflicts": [conflict.to_dict() for conflict in merged.price_conflicts],
            "canonical_headers": merged.canonical_headers,
            "provenance": merged.provenance_map(),
            "qc": qc_report,
        }
        logger.info(
            "Document %s: %s group(s), %s variant(s), status %s",
            doc_id,
            len(merged.groups),
            sum(len(group.variants) for group in merged.groups),
            status,
        )
        return DocumentResult(
            doc_id=doc_id,
            status=status,
            groups=merged.groups,
            notes=[note for result in chunk_results for note in result.notes],
            warnings=warnings,
            validation_errors=validate_groups(merged.groups),
            diagnostics=diagnostics,
        )
