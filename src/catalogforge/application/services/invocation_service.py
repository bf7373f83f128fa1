from __future__ import annotations

import logging
import math
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from catalogforge.application.services.budget_service import BudgetTracker
from catalogforge.core.errors import CacheError, CompletionServiceError, ExtractionCancelledError, TransientServiceError
from catalogforge.domain.models.catalog import Group
from catalogforge.domain.models.chunk import Chunk, InvocationResult, TokenUsage
from catalogforge.infrastructure.db.repos.chunk_cache_repo import ChunkCacheRepo
from catalogforge.infrastructure.llm.client import CompletionClient, CompletionRequest, CompletionResponse
from catalogforge.infrastructure.llm.schema import ChunkResponsePayload, parse_chunk_response, response_json_schema

logger = logging.getLogger(__name__)

DEFAULT_COST_PER_1K_TOKENS = 0.015
CHARS_PER_TOKEN = 4
CANCEL_POLL_SECONDS = 0.05


def estimate_tokens(system: str, user: str) -> int:
    return math.ceil(len(f"{system}\n{user}") / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class RenderedPrompt:
    system: str
    user: str


class LLMInvoker:
    def __init__(
        self,
        client: CompletionClient | None,
        *,
        model: str,
        cost_per_1k_tokens: float = DEFAULT_COST_PER_1K_TOKENS,
        max_attempts: int = 3,
        retry_delay_seconds: float = 0.5,
        backoff_factor: float = 1.6,
        jitter_seconds: float = 0.2,
        request_timeout_seconds: float | None = 120.0,
        cache: ChunkCacheRepo | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.cost_per_1k_tokens = max(0.0, cost_per_1k_tokens)
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)
        self.backoff_factor = max(1.0, backoff_factor)
        self.jitter_seconds = max(0.0, jitter_seconds)
        self.request_timeout_seconds = request_timeout_seconds
        self.cache = cache
        self._schema = response_json_schema(ChunkResponsePayload)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def cost_for_tokens(self, tokens: int) -> float:
        return tokens / 1000.0 * self.cost_per_1k_tokens

    def invoke(
        self,
        *,
        chunk: Chunk,
        prompt: RenderedPrompt,
        budget: BudgetTracker,
        canned_response: str | dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> InvocationResult:
        """Run one chunk through the completion service.

        Cache hits return without touching the budget or the client. Otherwise
        the estimated cost is reserved up front and settled exactly once:
        with the measured cost on success, with zero on any failure.
        """
        cached = self._load_cached(chunk)
        if cached is not None:
            return cached

        estimated_tokens = estimate_tokens(prompt.system, prompt.user)
        estimated_cost = self.cost_for_tokens(estimated_tokens)
        reservation = budget.reserve(estimated_cost)
        actual_cost = 0.0

        try:
            if canned_response is not None:
                parsed = parse_chunk_response(canned_response)
                usage = TokenUsage(total_tokens=estimated_tokens)
                retries = 0
            else:
                parsed, usage, retries = self._call_with_retries(
                    chunk=chunk,
                    prompt=prompt,
                    cancel_event=cancel_event,
                    deadline=deadline,
                )
                total_tokens = usage.total_tokens if usage.total_tokens > 0 else estimated_tokens
                actual_cost = self.cost_for_tokens(total_tokens)
        finally:
            budget.settle(reservation, actual_cost)

        result = InvocationResult(
            chunk_id=chunk.chunk_id,
            content_hash=chunk.content_hash,
            model=self.model,
            groups=parsed.to_groups(),
            warnings=list(parsed.warnings),
            notes=list(parsed.notes),
            usage=usage,
            cost_usd=actual_cost,
            estimated_cost_usd=estimated_cost,
            retries=retries,
        )
        if self.cache is not None and canned_response is None:
            try:
                self.cache.put(chunk.chunk_id, chunk.content_hash, self.model, result.to_cache_payload())
            except CacheError as exc:
                logger.warning("Could not cache chunk %s: %s", chunk.chunk_id, exc)
        return result

    def _call_with_retries(
        self,
        *,
        chunk: Chunk,
        prompt: RenderedPrompt,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> tuple[ChunkResponsePayload, TokenUsage, int]:
        if self.client is None:
            raise CompletionServiceError("No completion client is configured")

        attempt = 0
        while True:
            attempt += 1
            timeout = self._remaining_timeout(chunk, cancel_event, deadline)
            request = CompletionRequest(
                model=self.model,
                system=prompt.system,
                user=prompt.user,
                response_schema=self._schema,
                timeout_seconds=timeout,
            )
            try:
                response = self._complete(chunk, request, cancel_event, deadline)
            except TransientServiceError as exc:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Chunk %s failed after %s attempt(s): %s", chunk.chunk_id, attempt, exc
                    )
                    raise
                delay = self.retry_delay_seconds * (self.backoff_factor ** (attempt - 1))
                delay += random.uniform(0.0, self.jitter_seconds) if self.jitter_seconds else 0.0
                logger.info(
                    "Transient failure on chunk %s (attempt %s/%s, status %s); retrying in %.2fs",
                    chunk.chunk_id,
                    attempt,
                    self.max_attempts,
                    exc.status_code,
                    delay,
                )
                self._wait(chunk, delay, cancel_event, deadline)
                continue

            parsed = parse_chunk_response(response.content)
            usage = response.usage or TokenUsage()
            return parsed, usage, attempt - 1

    def _complete(
        self,
        chunk: Chunk,
        request: CompletionRequest,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> CompletionResponse:
        """Issue one request, abandoning it as soon as cancellation or the deadline hits.

        The request runs on its own worker thread so the caller can stop
        waiting on it. A response that lands after cancellation is discarded.
        """
        if cancel_event is None and deadline is None:
            return self.client.complete(request)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="completion")
        try:
            future = executor.submit(self.client.complete, request)
            pending = {future}
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    future.cancel()
                    raise ExtractionCancelledError(f"Invocation for chunk {chunk.chunk_id} was cancelled in flight")
                if deadline is not None and time.monotonic() >= deadline:
                    future.cancel()
                    raise ExtractionCancelledError(f"Deadline passed while chunk {chunk.chunk_id} was in flight")
                _, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            response = future.result()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if cancel_event is not None and cancel_event.is_set():
            raise ExtractionCancelledError(f"Invocation for chunk {chunk.chunk_id} was cancelled in flight")
        return response

    def _remaining_timeout(
        self,
        chunk: Chunk,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> float | None:
        if cancel_event is not None and cancel_event.is_set():
            raise ExtractionCancelledError(f"Invocation for chunk {chunk.chunk_id} was cancelled")
        timeout = self.request_timeout_seconds
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExtractionCancelledError(f"Deadline passed before chunk {chunk.chunk_id} was sent")
            timeout = remaining if timeout is None else min(timeout, remaining)
        return timeout

    def _wait(
        self,
        chunk: Chunk,
        delay: float,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> None:
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= delay:
                raise ExtractionCancelledError(f"Deadline leaves no time to retry chunk {chunk.chunk_id}")
        if cancel_event is None:
            if delay > 0:
                time.sleep(delay)
            return
        if cancel_event.wait(delay):
            raise ExtractionCancelledError(f"Invocation for chunk {chunk.chunk_id} was cancelled during backoff")

    def _load_cached(self, chunk: Chunk) -> InvocationResult | None:
        if self.cache is None:
            return None
        try:
            entry = self.cache.get(chunk.chunk_id, chunk.content_hash, self.model)
        except CacheError as exc:
            logger.warning("Chunk cache unavailable for %s; treating as a miss: %s", chunk.chunk_id, exc)
            return None
        if entry is None:
            return None
        payload = entry.payload
        usage_raw = payload.get("usage") or {}
        logger.debug("Cache hit for chunk %s", chunk.chunk_id)
        return InvocationResult(
            chunk_id=chunk.chunk_id,
            content_hash=chunk.content_hash,
            model=entry.model,
            groups=[Group.from_dict(group) for group in payload.get("groups") or []],
            warnings=list(payload.get("warnings") or []),
            notes=list(payload.get("notes") or []),
            usage=TokenUsage(
                prompt_tokens=int(usage_raw.get("prompt_tokens") or 0),
                completion_tokens=int(usage_raw.get("completion_tokens") or 0),
                total_tokens=int(usage_raw.get("total_tokens") or 0),
            ),
            cost_usd=0.0,
            estimated_cost_usd=0.0,
            retries=0,
            from_cache=True,
        )
