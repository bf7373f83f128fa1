from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from catalogforge.core.text import normalise_whitespace
from catalogforge.domain.models.chunk import ChunkResult
from catalogforge.infrastructure.llm.prompts import FIRST_CHUNK_CONTEXT

RECENT_SUMMARIES = 5
MAX_CODES = 12
MAX_BRANDS = 8
MAX_CATEGORIES = 8


@dataclass(frozen=True)
class ContextSnapshot:
    columns: tuple[str, ...] = ()
    brands: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    codes: tuple[str, ...] = ()
    summaries: tuple[dict[str, Any], ...] = ()


def _norm(value: Any) -> str:
    return normalise_whitespace(value).lower()


@dataclass(slots=True)
class DocumentContext:
    """Running knowledge about a document, shared by the chunk workers.

    Updates happen as chunks finish, so concurrent chunks may see slightly
    different snapshots. The context only steers prompts.
    """

    columns: dict[str, None] = field(default_factory=dict)
    brands: dict[str, None] = field(default_factory=dict)
    categories: dict[str, None] = field(default_factory=dict)
    codes: dict[str, None] = field(default_factory=dict)
    summaries: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def update(self, result: ChunkResult) -> None:
        with self._lock:
            for group in result.groups:
                for header in group.specs_headers:
                    if _norm(header):
                        self.columns.setdefault(_norm(header), None)
                if _norm(group.title):
                    self.categories.setdefault(_norm(group.title), None)
                for variant in group.variants:
                    brand_hint = _norm(variant.extras.get("brand"))
                    if brand_hint:
                        self.brands.setdefault(brand_hint, None)
                    if _norm(variant.code):
                        self.codes.setdefault(_norm(variant.code), None)
            self.summaries.append(
                {
                    "chunk_id": result.chunk.chunk_id,
                    "page_start": result.chunk.page_start,
                    "page_end": result.chunk.page_end,
                    "source": result.source,
                    "groups": len(result.groups),
                    "warnings": list(result.warnings[:4]),
                }
            )

    def snapshot(self) -> ContextSnapshot:
        with self._lock:
            return ContextSnapshot(
                columns=tuple(self.columns),
                brands=tuple(self.brands),
                categories=tuple(self.categories),
                codes=tuple(self.codes),
                summaries=tuple(dict(entry) for entry in self.summaries[-RECENT_SUMMARIES:]),
            )

    def format_for_prompt(self) -> str:
        snapshot = self.snapshot()
        lines: list[str] = []
        if snapshot.columns:
            lines.append(f"Columns so far: {', '.join(snapshot.columns)}")
        if snapshot.codes:
            lines.append(f"Known variant codes: {', '.join(snapshot.codes[:MAX_CODES])}")
        if snapshot.brands:
            lines.append(f"Brand hints: {', '.join(snapshot.brands[:MAX_BRANDS])}")
        if snapshot.categories:
            lines.append(f"Categories seen: {', '.join(snapshot.categories[:MAX_CATEGORIES])}")
        if snapshot.summaries:
            formatted = []
            for entry in snapshot.summaries:
                start, end = entry["page_start"], entry["page_end"]
                page_range = f"{start}" if start == end else f"{start}-{end}"
                formatted.append(f"{entry['chunk_id']} [{page_range}] -> {entry['groups']} groups via {entry['source']}")
            lines.append(f"Recent chunks: {'; '.join(formatted)}")
        if not lines:
            return FIRST_CHUNK_CONTEXT
        return "\n".join(lines)
