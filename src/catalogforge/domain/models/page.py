from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from catalogforge.core.errors import PageModelError


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class TextSegment:
    id: str
    text: str
    bbox: BoundingBox | None = None
    kind: str = field(default="text", init=False)

    def content(self) -> str:
        return self.text


@dataclass(frozen=True)
class TableSegment:
    id: str
    header: tuple[str, ...] = ()
    rows: tuple[tuple[str, ...], ...] = ()
    source_rows: tuple[str, ...] = ()
    kind: str = field(default="table", init=False)

    def content(self) -> str:
        lines = ["\t".join(self.header)] if self.header else []
        lines.extend("\t".join(row) for row in self.rows)
        return "\n".join(lines)


@dataclass(frozen=True)
class ImageSegment:
    id: str
    caption: str = ""
    kind: str = field(default="image", init=False)

    def content(self) -> str:
        return self.caption


Segment = Union[TextSegment, TableSegment, ImageSegment]


@dataclass(frozen=True)
class Page:
    page_number: int
    segments: tuple[Segment, ...] = ()
    raw_text: str = ""

    @property
    def text_segments(self) -> list[TextSegment]:
        return [s for s in self.segments if isinstance(s, TextSegment)]

    @property
    def table_segments(self) -> list[TableSegment]:
        return [s for s in self.segments if isinstance(s, TableSegment)]

    @property
    def image_segments(self) -> list[ImageSegment]:
        return [s for s in self.segments if isinstance(s, ImageSegment)]

    def to_dict(self) -> dict[str, Any]:
        segments: list[dict[str, Any]] = []
        for segment in self.segments:
            if isinstance(segment, TextSegment):
                payload: dict[str, Any] = {"kind": "text", "id": segment.id, "text": segment.text}
                if segment.bbox is not None:
                    payload["bbox"] = {
                        "x": segment.bbox.x,
                        "y": segment.bbox.y,
                        "width": segment.bbox.width,
                        "height": segment.bbox.height,
                    }
            elif isinstance(segment, TableSegment):
                payload = {
                    "kind": "table",
                    "id": segment.id,
                    "header": list(segment.header),
                    "rows": [list(row) for row in segment.rows],
                    "source_rows": list(segment.source_rows),
                }
            else:
                payload = {"kind": "image", "id": segment.id, "caption": segment.caption}
            segments.append(payload)
        return {"page_number": self.page_number, "raw_text": self.raw_text, "segments": segments}

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, position: int = 0) -> Page:
        """Build a page from the JSON page model.

        Accepts the flat ``segments`` list as well as the upstream parser's
        ``textBlocks``/``tables``/``images`` arrays and camelCase keys.
        """
        if not isinstance(data, dict):
            raise PageModelError(f"Page entry {position + 1} is not an object")

        number_raw = data.get("page_number", data.get("pageNumber", data.get("page")))
        try:
            page_number = int(number_raw) if number_raw is not None else position + 1
        except (TypeError, ValueError) as exc:
            raise PageModelError(f"Page entry {position + 1} has an invalid page number: {number_raw!r}") from exc

        raw_text = str(data.get("raw_text", data.get("rawText", "")) or "")
        segments: list[Segment] = []
        for index, entry in enumerate(data.get("segments") or []):
            segments.append(_segment_from_dict(entry, page_number, index))
        for index, entry in enumerate(data.get("textBlocks") or []):
            segments.append(_segment_from_dict({"kind": "text", **entry}, page_number, index))
        for index, entry in enumerate(data.get("tables") or []):
            segments.append(_segment_from_dict({"kind": "table", **entry}, page_number, index))
        for index, entry in enumerate(data.get("images") or []):
            segments.append(_segment_from_dict({"kind": "image", **entry}, page_number, index))

        return cls(page_number=page_number, segments=tuple(segments), raw_text=raw_text)


def _bbox_from(value: Any) -> BoundingBox | None:
    if not isinstance(value, dict):
        return None
    try:
        return BoundingBox(
            x=float(value.get("x", 0.0)),
            y=float(value.get("y", 0.0)),
            width=float(value.get("width", 0.0)),
            height=float(value.get("height", 0.0)),
        )
    except (TypeError, ValueError):
        return None


def _cells(values: Any) -> tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple("" if cell is None else str(cell) for cell in values)


def _segment_from_dict(entry: Any, page_number: int, index: int) -> Segment:
    if not isinstance(entry, dict):
        raise PageModelError(f"Segment {index + 1} on page {page_number} is not an object")

    kind = str(entry.get("kind") or entry.get("type") or "text").lower()
    default_id = f"p{page_number}-{kind}{index + 1}"
    segment_id = str(entry.get("id") or default_id)

    if kind == "text":
        return TextSegment(id=segment_id, text=str(entry.get("text") or ""), bbox=_bbox_from(entry.get("bbox")))
    if kind == "table":
        rows = tuple(_cells(row) for row in entry.get("rows") or [] if isinstance(row, (list, tuple)))
        source_rows = tuple(str(row) for row in entry.get("source_rows", entry.get("sourceRows")) or [])
        return TableSegment(id=segment_id, header=_cells(entry.get("header")), rows=rows, source_rows=source_rows)
    if kind == "image":
        return ImageSegment(id=segment_id, caption=str(entry.get("caption") or ""))
    raise PageModelError(f"Unknown segment kind '{kind}' on page {page_number}")


def pages_from_payload(payload: Any) -> list[Page]:
    """Pages from either a bare list or an object with a ``pages`` array."""
    if isinstance(payload, dict):
        payload = payload.get("pages")
    if not isinstance(payload, list):
        raise PageModelError("Page model must be a list of pages or an object with a 'pages' list")
    return [Page.from_dict(entry, position=index) for index, entry in enumerate(payload)]
