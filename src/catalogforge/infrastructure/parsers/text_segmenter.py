from __future__ import annotations

import re

from catalogforge.domain.models.page import ImageSegment, Page, Segment, TableSegment, TextSegment

_CELL_SPLIT_RE = re.compile(r"\s{2,}|\t|\s*\|\s*")
_TABULAR_RE = re.compile(r"\S(?:\s{2,}|\t|\s*\|\s*)\S")
_CAPTION_RE = re.compile(r"^\s*(?:fig(?:ure)?\.?|image|photo|plate)\s*\d*\s*[:.\-]", re.IGNORECASE)
_DIGIT_RE = re.compile(r"\d")


def is_tabular(line: str) -> bool:
    return bool(_TABULAR_RE.search(line.strip()))


def split_cells(line: str) -> tuple[str, ...]:
    return tuple(cell.strip() for cell in _CELL_SPLIT_RE.split(line.strip().strip("|")) if cell.strip())


def segment_page_text(raw_text: str, page_number: int) -> tuple[Segment, ...]:
    """Rebuild segments from raw page text.

    Runs of tabular lines (two or more spaces, a tab or a pipe between
    cells) become one table each; a leading row without digits is taken as
    the header. Figure captions become image segments and everything else
    is grouped into text segments.
    """
    segments: list[Segment] = []
    counters = {"text": 0, "table": 0, "image": 0}
    text_run: list[str] = []
    table_run: list[str] = []

    def next_id(kind: str) -> str:
        counters[kind] += 1
        return f"p{page_number}-{kind}{counters[kind]}"

    def flush_text() -> None:
        if text_run:
            segments.append(TextSegment(id=next_id("text"), text="\n".join(text_run)))
            text_run.clear()

    def flush_table() -> None:
        if not table_run:
            return
        rows = [split_cells(line) for line in table_run]
        header: tuple[str, ...] = ()
        if len(rows) > 1 and not _DIGIT_RE.search(" ".join(rows[0])):
            header, rows = rows[0], rows[1:]
        segments.append(
            TableSegment(
                id=next_id("table"),
                header=header,
                rows=tuple(rows),
                source_rows=tuple(line.strip() for line in table_run),
            )
        )
        table_run.clear()

    for line in raw_text.splitlines():
        if not line.strip():
            flush_text()
            flush_table()
            continue
        if _CAPTION_RE.match(line):
            flush_text()
            flush_table()
            segments.append(ImageSegment(id=next_id("image"), caption=line.strip()))
        elif is_tabular(line):
            flush_text()
            table_run.append(line)
        else:
            flush_table()
            text_run.append(line.strip())

    flush_text()
    flush_table()
    return tuple(segments)


def resegment_page(page: Page) -> Page:
    """Fresh page whose segments come from its raw text; pages without raw text are returned as-is."""
    if not page.raw_text.strip():
        return page
    return Page(
        page_number=page.page_number,
        segments=segment_page_text(page.raw_text, page.page_number),
        raw_text=page.raw_text,
    )
