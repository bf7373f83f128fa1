from __future__ import annotations

import logging
import re

from catalogforge.application.services.deterministic_extractor import DeterministicExtractor
from catalogforge.core.errors import ExtractorFailureError
from catalogforge.domain.models.chunk import SOURCE_ERROR, SOURCE_FALLBACK, SOURCE_LLM, Chunk, ChunkResult, InvocationResult
from catalogforge.domain.models.extraction import ExtractionOptions

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_RE = re.compile(r"low[_\s-]*confidence", re.IGNORECASE)


def fallback_reason(invocation: InvocationResult | None, error: BaseException | None) -> str | None:
    """Why the LLM output should be replaced, or None when it can stand."""
    if error is not None or invocation is None:
        return "llm_failed"
    if not invocation.groups:
        return "llm_no_groups"
    if any(LOW_CONFIDENCE_RE.search(warning) for warning in invocation.warnings):
        return "llm_low_confidence"
    return None


class FallbackSelector:
    def __init__(self, extractor: DeterministicExtractor) -> None:
        self.extractor = extractor

    def select(
        self,
        *,
        chunk: Chunk,
        invocation: InvocationResult | None,
        error: BaseException | None = None,
        options: ExtractionOptions | None = None,
    ) -> ChunkResult:
        reason = fallback_reason(invocation, error)
        llm_warnings = list(invocation.warnings) if invocation is not None else []
        llm_notes = list(invocation.notes) if invocation is not None else []
        error_text = f"{type(error).__name__}: {error}" if error is not None else None

        if reason is None:
            return ChunkResult(
                chunk=chunk,
                source=SOURCE_LLM,
                groups=invocation.groups,
                warnings=llm_warnings,
                notes=llm_notes,
                invocation=invocation,
            )

        llm_source = SOURCE_ERROR if reason == "llm_failed" else SOURCE_LLM
        llm_groups = invocation.groups if invocation is not None else []
        warnings = llm_warnings + [f"fallback_triggered:{reason}"]

        try:
            outcome = self.extractor.extract(chunk.pages, options)
        except ExtractorFailureError as exc:
            logger.warning("Fallback extraction failed for chunk %s; it contributes no groups: %s", chunk.chunk_id, exc)
            return ChunkResult(
                chunk=chunk,
                source=SOURCE_ERROR,
                groups=[],
                warnings=warnings + [f"fallback_failed:{exc}"],
                notes=llm_notes,
                invocation=invocation,
                error=error_text,
            )

        if outcome.groups:
            logger.info(
                "Chunk %s (pages %s-%s) uses fallback output (%s)",
                chunk.chunk_id,
                chunk.page_start,
                chunk.page_end,
                reason,
            )
            return ChunkResult(
                chunk=chunk,
                source=SOURCE_FALLBACK,
                groups=outcome.groups,
                warnings=warnings + outcome.warnings,
                notes=llm_notes,
                invocation=invocation,
                error=error_text,
                fallback_diagnostics=outcome.diagnostics,
            )

        return ChunkResult(
            chunk=chunk,
            source=llm_source,
            groups=llm_groups,
            warnings=warnings + outcome.warnings,
            notes=llm_notes,
            invocation=invocation,
            error=error_text,
            fallback_diagnostics=outcome.diagnostics,
        )
