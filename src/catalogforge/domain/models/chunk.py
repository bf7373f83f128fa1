from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from catalogforge.domain.models.catalog import Group
from catalogforge.domain.models.page import Page

SOURCE_LLM = "llm"
SOURCE_FALLBACK = "fallback"
SOURCE_ERROR = "error"


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    ordinal: int
    page_start: int
    page_end: int
    content_hash: str
    pages: tuple[Page, ...]

    @property
    def page_range(self) -> tuple[int, int]:
        return (self.page_start, self.page_end)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True)
class InvocationResult:
    chunk_id: str
    content_hash: str
    model: str
    groups: list[Group]
    warnings: list[str]
    notes: list[str]
    usage: TokenUsage
    cost_usd: float
    estimated_cost_usd: float
    retries: int
    from_cache: bool = False

    def to_cache_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "groups": [group.to_dict(include_provenance=False) for group in self.groups],
            "warnings": list(self.warnings),
            "notes": list(self.notes),
            "usage": self.usage.to_dict(),
            "cost_usd": self.cost_usd,
            "estimated_cost_usd": self.estimated_cost_usd,
        }


@dataclass(slots=True)
class ChunkResult:
    chunk: Chunk
    source: str
    groups: list[Group] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    invocation: InvocationResult | None = None
    error: str | None = None
    fallback_diagnostics: dict[str, Any] | None = None

    @property
    def cost_usd(self) -> float:
        return self.invocation.cost_usd if self.invocation is not None else 0.0

    def summary(self) -> dict[str, Any]:
        invocation = self.invocation
        return {
            "chunk_id": self.chunk.chunk_id,
            "page_start": self.chunk.page_start,
            "page_end": self.chunk.page_end,
            "content_hash": self.chunk.content_hash,
            "source": self.source,
            "groups": len(self.groups),
            "variants": sum(len(group.variants) for group in self.groups),
            "warnings": list(self.warnings),
            "error": self.error,
            "from_cache": bool(invocation and invocation.from_cache),
            "retries": invocation.retries if invocation else 0,
            "cost_usd": invocation.cost_usd if invocation else 0.0,
            "estimated_cost_usd": invocation.estimated_cost_usd if invocation else 0.0,
        }
