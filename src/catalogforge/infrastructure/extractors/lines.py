from __future__ import annotations

import re
from dataclasses import dataclass

from catalogforge.core.text import normalise_whitespace
from catalogforge.domain.models.page import Page, TableSegment, TextSegment

TABLE_CELL_SEPARATOR = "    "

_SKU_RE = re.compile(r"[A-Z0-9]{3,}(?:-[A-Z0-9]+)+|(?<!HSN\s)\b[0-9]{6,}\b", re.IGNORECASE)
_PRICE_LIKE_RE = re.compile(r"\b(?:\d{1,3}(?:,\d{3})+|\d{2,})(?:\.\d+)?(?!\s*%)")
_HEADER_BLOCK_ID_RE = re.compile(r"h\d+$", re.IGNORECASE)
_HSN_DIGITS_RE = re.compile(r"\d{8}")


@dataclass(frozen=True)
class Line:
    text: str
    page_number: int
    block_id: str | None = None

    def with_text(self, text: str) -> Line:
        return Line(text=text, page_number=self.page_number, block_id=self.block_id)


def table_lines(page: Page, table: TableSegment, *, separator: str = TABLE_CELL_SEPARATOR) -> list[Line]:
    out: list[Line] = []
    if table.header:
        out.append(Line(separator.join(table.header), page.page_number, table.id))
    for row in table.rows:
        out.append(Line(separator.join(row), page.page_number, table.id))
    return out


def raw_text_lines(page: Page) -> list[Line]:
    return [Line(entry.strip(), page.page_number) for entry in page.raw_text.splitlines() if entry.strip()]


def layout_lines(pages: list[Page] | tuple[Page, ...]) -> list[Line]:
    """Column-preserving view: text split on newlines, table cells joined by wide gaps."""
    lines: list[Line] = []
    for page in pages:
        if not page.text_segments and not page.table_segments:
            lines.extend(raw_text_lines(page))
            continue
        for segment in page.segments:
            if isinstance(segment, TextSegment):
                for entry in segment.text.splitlines():
                    if entry.strip():
                        lines.append(Line(entry.strip(), page.page_number, segment.id))
            elif isinstance(segment, TableSegment):
                lines.extend(table_lines(page, segment))
    return lines


def pre_segment_text(text: str) -> list[str]:
    """Split a text block into fragments that each start at a SKU and carry a price-like token."""
    trimmed = (text or "").strip()
    if not trimmed:
        return []
    # Eight-digit runs are HSN codes, never record boundaries.
    starts = [m.start() for m in _SKU_RE.finditer(trimmed) if not _HSN_DIGITS_RE.fullmatch(m.group(0))]
    if not starts:
        return [trimmed] if _PRICE_LIKE_RE.search(trimmed) else []

    fragments: list[str] = []
    lead = trimmed[: starts[0]].strip()
    if lead:
        fragments.append(lead)
    for position, start in enumerate(starts):
        end = starts[position + 1] if position + 1 < len(starts) else len(trimmed)
        fragment = trimmed[start:end].strip()
        if fragment and _PRICE_LIKE_RE.search(fragment):
            fragments.append(fragment)
    return fragments


def recovery_lines(pages: list[Page] | tuple[Page, ...]) -> list[Line]:
    """Whitespace-normalized, de-duplicated lines for price-anchored recovery."""
    lines: list[Line] = []
    seen: set[tuple[int, str | None, str]] = set()

    def push(text: str, page: Page, block_id: str | None) -> None:
        normalised = normalise_whitespace(text)
        if not normalised:
            return
        key = (page.page_number, block_id, normalised)
        if key in seen:
            return
        seen.add(key)
        lines.append(Line(normalised, page.page_number, block_id))

    for page in pages:
        if not page.text_segments and not page.table_segments:
            for line in raw_text_lines(page):
                for fragment in pre_segment_text(line.text) or [line.text]:
                    push(fragment, page, None)
            continue
        for segment in page.segments:
            if isinstance(segment, TextSegment):
                for entry in segment.text.splitlines():
                    if not entry.strip():
                        continue
                    for fragment in pre_segment_text(entry) or [entry]:
                        push(fragment, page, segment.id)
            elif isinstance(segment, TableSegment):
                for line in table_lines(page, segment, separator=" "):
                    push(line.text, page, segment.id)
    return lines


def page_currency_hints(pages: list[Page] | tuple[Page, ...]) -> dict[int, str]:
    """Currency announced in a page's heading blocks, keyed by page number."""
    hints: dict[int, str] = {}
    for page in pages:
        texts = page.text_segments
        headings = [segment.text for segment in texts if _HEADER_BLOCK_ID_RE.search(segment.id)]
        if not headings and texts:
            headings = [texts[0].text]
        header_text = normalise_whitespace(" ".join(headings))
        if re.search(r"₹|\bINR\b", header_text, re.IGNORECASE):
            hints[page.page_number] = "INR"
        elif re.search(r"€|\bEUR\b", header_text, re.IGNORECASE):
            hints[page.page_number] = "EUR"
        elif re.search(r"\$|\bUSD\b", header_text, re.IGNORECASE):
            hints[page.page_number] = "USD"
    return hints
