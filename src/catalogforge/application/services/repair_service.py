from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any

from catalogforge.domain.models.extraction import ExtractionOptions
from catalogforge.domain.models.page import Page, TableSegment
from catalogforge.infrastructure.extractors.pattern_registry import KNOWN_ROLES
from catalogforge.infrastructure.parsers.text_segmenter import resegment_page

logger = logging.getLogger(__name__)

REPAIR_RESEGMENT = "resegment"
REPAIR_STITCH_ROWS = "stitch_rows"
REPAIR_COLUMN_HINT = "column_hint"
REPAIR_PREFER_PATTERN = "prefer_pattern"
REPAIR_FORCE_PRICE_ANCHORED = "force_price_anchored"

# Header text written into a table when a column is mapped to a role.
ROLE_HEADERS = {
    "code": "Cat No",
    "cas": "CAS",
    "name": "Description",
    "pack": "Pack",
    "price": "Price",
    "currency": "Currency",
    "notes": "Notes",
    "hsn": "HSN",
    "gst": "GST %",
}

_RESEGMENT_RE = re.compile(r"re-?\s?segment|segmentation|token|split", re.IGNORECASE)
_STITCH_RE = re.compile(r"stitch|wrapped|wrap", re.IGNORECASE)
_COLUMN_RE = re.compile(r"column\s+(\d+)\s*(?:→|->|=>|=|to|as)\s*([a-z_]+)", re.IGNORECASE)
_PATTERN_RE = re.compile(r"pattern\s+([a-z0-9_\-]+)", re.IGNORECASE)
_FORCE_RE = re.compile(r"price[\s_-]*anchor|anchored\s+recovery|force\s+(?:the\s+)?(?:price|fallback)", re.IGNORECASE)
_STITCH_TAIL_RE = re.compile(r"₹|rs\.?|\d", re.IGNORECASE)


@dataclass(frozen=True)
class RepairAdjustment:
    kind: str
    directive: str
    column_index: int | None = None
    role: str | None = None
    pattern_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "directive": self.directive}
        if self.column_index is not None:
            payload["column"] = self.column_index + 1
            payload["role"] = self.role
        if self.pattern_id is not None:
            payload["pattern_id"] = self.pattern_id
        return payload


@dataclass(frozen=True)
class RepairPlan:
    """Structured reading of a critique's repair directives."""

    adjustments: tuple[RepairAdjustment, ...] = ()
    unrecognised: tuple[str, ...] = ()

    def _kinds(self) -> set[str]:
        return {adjustment.kind for adjustment in self.adjustments}

    @property
    def empty(self) -> bool:
        return not self.adjustments

    @property
    def resegment(self) -> bool:
        return REPAIR_RESEGMENT in self._kinds()

    @property
    def stitch_rows(self) -> bool:
        return REPAIR_STITCH_ROWS in self._kinds()

    @property
    def force_price_anchored(self) -> bool:
        return REPAIR_FORCE_PRICE_ANCHORED in self._kinds()

    @property
    def column_hints(self) -> dict[int, str]:
        """Zero-based column index to role; later directives win."""
        hints: dict[int, str] = {}
        for adjustment in self.adjustments:
            if adjustment.kind == REPAIR_COLUMN_HINT and adjustment.column_index is not None and adjustment.role:
                hints[adjustment.column_index] = adjustment.role
        return hints

    @property
    def preferred_patterns(self) -> tuple[str, ...]:
        ordered: list[str] = []
        for adjustment in self.adjustments:
            if adjustment.kind == REPAIR_PREFER_PATTERN and adjustment.pattern_id not in ordered:
                ordered.append(adjustment.pattern_id)
        return tuple(ordered)

    def extraction_options(self, base: ExtractionOptions) -> ExtractionOptions:
        return replace(
            base,
            preferred_patterns=self.preferred_patterns or base.preferred_patterns,
            force_price_anchored=base.force_price_anchored or self.force_price_anchored,
        )

    def to_dicts(self) -> tuple[dict[str, Any], ...]:
        return tuple(adjustment.to_dict() for adjustment in self.adjustments)


def parse_repair_directives(directives: list[Any] | tuple[Any, ...]) -> RepairPlan:
    adjustments: list[RepairAdjustment] = []
    unrecognised: list[str] = []
    for entry in directives:
        if entry is None:
            continue
        text = str(entry).strip()
        if not text:
            continue
        found: list[RepairAdjustment] = []
        for match in _COLUMN_RE.finditer(text):
            index = int(match.group(1)) - 1
            role = match.group(2).lower()
            if index >= 0 and role in KNOWN_ROLES:
                found.append(RepairAdjustment(REPAIR_COLUMN_HINT, text, column_index=index, role=role))
        pattern = _PATTERN_RE.search(text)
        if pattern:
            found.append(RepairAdjustment(REPAIR_PREFER_PATTERN, text, pattern_id=pattern.group(1)))
        if _RESEGMENT_RE.search(text):
            found.append(RepairAdjustment(REPAIR_RESEGMENT, text))
        if _STITCH_RE.search(text):
            found.append(RepairAdjustment(REPAIR_STITCH_ROWS, text))
        if _FORCE_RE.search(text):
            found.append(RepairAdjustment(REPAIR_FORCE_PRICE_ANCHORED, text))
        if found:
            adjustments.extend(found)
        else:
            unrecognised.append(text)
    return RepairPlan(adjustments=tuple(adjustments), unrecognised=tuple(unrecognised))


def stitch_table(table: TableSegment) -> TableSegment:
    """Fold wrapped rows back into the row above them."""
    width = len(table.header)
    stitched: list[list[str]] = []
    for row in table.rows:
        if not stitched:
            stitched.append(list(row))
            continue
        filled = [cell for cell in row if cell]
        last = stitched[-1]
        if width and len(row) < width:
            for index, addon in enumerate(row):
                if not addon:
                    continue
                if index < len(last):
                    last[index] = f"{last[index]} {addon}".strip()
                else:
                    last.append(addon)
            continue
        if len(filled) == 1 and _STITCH_TAIL_RE.search(filled[0]):
            last[-1] = f"{last[-1]} {filled[0]}".strip() if last else filled[0]
            continue
        stitched.append(list(row))
    return replace(table, rows=tuple(tuple(row) for row in stitched))


def hint_columns(table: TableSegment, hints: dict[int, str]) -> TableSegment:
    if not table.header or not hints:
        return table
    header = list(table.header)
    for index, role in hints.items():
        if 0 <= index < len(header):
            header[index] = ROLE_HEADERS.get(role, role)
    return replace(table, header=tuple(header))


def apply_repair_plan(pages: list[Page], plan: RepairPlan) -> list[Page]:
    """Fresh pages with the plan's page-level adjustments applied.

    Order is fixed: re-segment from raw text, then column hints, then
    row stitching. Input pages are never modified.
    """
    repaired = list(pages)
    if plan.resegment:
        repaired = [resegment_page(page) for page in repaired]

    hints = plan.column_hints
    if hints or plan.stitch_rows:
        updated: list[Page] = []
        for page in repaired:
            segments = []
            for segment in page.segments:
                if isinstance(segment, TableSegment):
                    segment = hint_columns(segment, hints)
                    if plan.stitch_rows:
                        segment = stitch_table(segment)
                segments.append(segment)
            updated.append(replace(page, segments=tuple(segments)))
        repaired = updated

    logger.debug(
        "Applied repair plan to %s page(s): %s",
        len(repaired),
        [adjustment.kind for adjustment in plan.adjustments],
    )
    return repaired
