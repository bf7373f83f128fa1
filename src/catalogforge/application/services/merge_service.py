from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any

from catalogforge.core.text import normalise_whitespace
from catalogforge.domain.models.catalog import (
    DEFAULT_GROUP_CATEGORY,
    VARIANT_FIELDS,
    Group,
    PriceConflict,
    Provenance,
    Variant,
)
from catalogforge.domain.models.chunk import ChunkResult

logger = logging.getLogger(__name__)

_HEADER_STRIP_RE = re.compile(r"[^a-z0-9\s\-/_]")


def normalise_header(header: str | None) -> str:
    return _HEADER_STRIP_RE.sub("", normalise_whitespace(header).lower())


@dataclass(frozen=True)
class MergeInput:
    """One contributor's groups plus where they came from."""

    groups: list[Group]
    provenance: Provenance

    @classmethod
    def from_chunk_result(cls, result: ChunkResult) -> MergeInput:
        return cls(
            groups=result.groups,
            provenance=Provenance(
                chunk_id=result.chunk.chunk_id,
                source=result.source,
                page_start=result.chunk.page_start,
                page_end=result.chunk.page_end,
            ),
        )


@dataclass(slots=True)
class MergedCatalog:
    groups: list[Group] = field(default_factory=list)
    canonical_headers: list[str] = field(default_factory=list)
    price_conflicts: list[PriceConflict] = field(default_factory=list)

    def provenance_map(self) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for group in self.groups:
            for variant in group.variants:
                entries.append(
                    {
                        "group": group.title,
                        "key": variant.merge_key(),
                        "provenance": variant.provenance.to_dict() if variant.provenance else {},
                    }
                )
        return entries


def _stamp(variant: Variant, provenance: Provenance) -> Provenance:
    """Keep an existing chunk-level provenance, layering window fields on top."""
    current = variant.provenance
    if current is None:
        return provenance
    return replace(
        current,
        window_index=provenance.window_index if provenance.window_index is not None else current.window_index,
        window_page_start=(
            provenance.window_page_start if provenance.window_page_start is not None else current.window_page_start
        ),
        window_page_end=(
            provenance.window_page_end if provenance.window_page_end is not None else current.window_page_end
        ),
    )


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class ChunkMerger:
    """Folds per-chunk (or per-window) groups into one catalog.

    Groups join on their normalised title and variants on their merge key.
    The first record seen under a key is the base; a later one only
    overwrites populated fields when it ranks strictly higher.
    """

    def merge(self, inputs: list[MergeInput]) -> MergedCatalog:
        merged = MergedCatalog()
        groups_by_key: dict[str, Group] = {}
        variants_by_key: dict[str, dict[str, Variant]] = {}
        header_keys: dict[str, set[str]] = {}
        canonical: dict[str, str] = {}
        conflict_seen: set[tuple[Any, ...]] = set()

        for part in inputs:
            for group in part.groups:
                title_key = group.title_key()
                target = groups_by_key.get(title_key)
                if target is None:
                    target = Group(
                        title=group.title,
                        category=group.category,
                        description=group.description,
                        page_start=group.page_start,
                        page_end=group.page_end,
                    )
                    groups_by_key[title_key] = target
                    variants_by_key[title_key] = {}
                    header_keys[title_key] = set()
                    merged.groups.append(target)
                else:
                    self._merge_group_fields(target, group)

                for header in group.specs_headers:
                    normalised = normalise_header(header)
                    if not normalised:
                        continue
                    canonical.setdefault(normalised, header)
                    if normalised not in header_keys[title_key]:
                        header_keys[title_key].add(normalised)
                        target.specs_headers.append(header)

                for variant in group.variants:
                    candidate = variant.copy()
                    candidate.provenance = _stamp(variant, part.provenance)
                    key = candidate.merge_key()
                    existing = variants_by_key[title_key].get(key)
                    if existing is None:
                        candidate.refresh_fields_present()
                        variants_by_key[title_key][key] = candidate
                        target.variants.append(candidate)
                        continue
                    conflict = self._price_conflict(key, existing, candidate)
                    if conflict is not None:
                        marker = conflict.identity()
                        if marker not in conflict_seen:
                            conflict_seen.add(marker)
                            merged.price_conflicts.append(conflict)
                    self._merge_variant(existing, candidate)

        merged.canonical_headers = list(canonical.values())
        logger.debug(
            "Merged %s input(s) into %s group(s), %s price conflict(s)",
            len(inputs),
            len(merged.groups),
            len(merged.price_conflicts),
        )
        return merged

    def merge_chunk_results(self, results: list[ChunkResult]) -> MergedCatalog:
        return self.merge([MergeInput.from_chunk_result(result) for result in results])

    @staticmethod
    def _merge_group_fields(target: Group, group: Group) -> None:
        if target.category == DEFAULT_GROUP_CATEGORY and group.category != DEFAULT_GROUP_CATEGORY:
            target.category = group.category
        if not target.description and group.description:
            target.description = group.description
        starts = [p for p in (target.page_start, group.page_start) if p is not None]
        ends = [p for p in (target.page_end, group.page_end) if p is not None]
        target.page_start = min(starts) if starts else None
        target.page_end = max(ends) if ends else None

    @staticmethod
    def _price_conflict(key: str, existing: Variant, candidate: Variant) -> PriceConflict | None:
        if existing.price_value is None or candidate.price_value is None:
            return None
        if abs(existing.price_value - candidate.price_value) < 1e-9:
            return None
        before = existing.provenance or Provenance()
        after = candidate.provenance or Provenance()
        return PriceConflict(
            key=key,
            code=candidate.code or existing.code,
            name=candidate.name or existing.name,
            chunk_ids=(before.chunk_id, after.chunk_id),
            values=(existing.price_value, candidate.price_value),
            window_indexes=(before.window_index, after.window_index),
            page_ranges=((before.page_start, before.page_end), (after.page_start, after.page_end)),
        )

    @staticmethod
    def _merge_variant(base: Variant, candidate: Variant) -> None:
        candidate_wins = candidate.rank() > base.rank()
        for name in VARIANT_FIELDS:
            incoming = getattr(candidate, name)
            if _is_empty(incoming):
                continue
            if _is_empty(getattr(base, name)) or candidate_wins:
                setattr(base, name, incoming)
        for key, value in candidate.extras.items():
            if key not in base.extras or candidate_wins:
                base.extras[key] = value
        if candidate_wins:
            base.confidence = candidate.confidence
            base.provenance = candidate.provenance
        base.refresh_fields_present()
