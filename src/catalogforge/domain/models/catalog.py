from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

from catalogforge.core.text import normalise_key, normalise_whitespace

DEFAULT_GROUP_TITLE = "Untitled Product"
DEFAULT_GROUP_CATEGORY = "general"

# Scalar fields that count towards fields_present and take part in field-level merges.
VARIANT_FIELDS = (
    "code",
    "cas",
    "name",
    "pack",
    "pack_raw",
    "size",
    "hsn",
    "gst_percent",
    "price_value",
    "currency",
    "notes",
)


@dataclass(frozen=True)
class Provenance:
    chunk_id: str | None = None
    source: str | None = None
    page_start: int | None = None
    page_end: int | None = None
    window_index: int | None = None
    window_page_start: int | None = None
    window_page_end: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(slots=True)
class Variant:
    code: str | None = None
    cas: str | None = None
    name: str | None = None
    pack: str | None = None
    pack_raw: str | None = None
    size: str | None = None
    hsn: str | None = None
    gst_percent: float | None = None
    price_value: float | None = None
    currency: str | None = None
    notes: str | None = None
    confidence: float = 0.0
    fields_present: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)
    provenance: Provenance | None = None

    def populated_fields(self) -> list[str]:
        present = []
        for name in VARIANT_FIELDS:
            value = getattr(self, name)
            if value is None or value == "":
                continue
            present.append(name)
        return present

    def refresh_fields_present(self) -> None:
        self.fields_present = self.populated_fields()

    def merge_key(self) -> str:
        """Identity used for de-duplication; provenance never takes part."""
        code = normalise_key(self.code)
        if code:
            return f"code:{code}"
        return f"name:{normalise_key(self.name)}|pack:{normalise_key(self.pack)}|size:{normalise_key(self.size)}"

    def rank(self) -> tuple[float, int, int]:
        """Total order used wherever two records for one product compete.

        Higher confidence first, then more populated fields, then the longer
        name. Callers keep the earlier record on a full tie.
        """
        return (
            round(float(self.confidence or 0.0), 6),
            len(self.populated_fields()),
            len(normalise_whitespace(self.name)),
        )

    def copy(self) -> Variant:
        return replace(self, fields_present=list(self.fields_present), extras=dict(self.extras))

    def to_dict(self, *, include_provenance: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {name: getattr(self, name) for name in VARIANT_FIELDS}
        payload["confidence"] = self.confidence
        payload["fields_present"] = list(self.fields_present)
        payload.update(self.extras)
        if include_provenance and self.provenance is not None:
            payload["provenance"] = self.provenance.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Variant:
        known = {name: data.get(name) for name in VARIANT_FIELDS}
        for name in ("gst_percent", "price_value"):
            value = known.get(name)
            if value is not None and not isinstance(value, (int, float)):
                try:
                    known[name] = float(str(value).replace(",", ""))
                except ValueError:
                    known[name] = None
        for name in VARIANT_FIELDS:
            value = known[name]
            if isinstance(value, str):
                known[name] = normalise_whitespace(value) or None
        extras = {
            key: value
            for key, value in data.items()
            if key not in VARIANT_FIELDS and key not in {"confidence", "fields_present", "provenance"}
        }
        confidence = data.get("confidence")
        variant = cls(
            **known,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.0,
            fields_present=[str(v) for v in data.get("fields_present") or []],
            extras=extras,
        )
        if not variant.fields_present:
            variant.refresh_fields_present()
        return variant


@dataclass(slots=True)
class Group:
    title: str = DEFAULT_GROUP_TITLE
    category: str = DEFAULT_GROUP_CATEGORY
    specs_headers: list[str] = field(default_factory=list)
    description: str = ""
    variants: list[Variant] = field(default_factory=list)
    page_start: int | None = None
    page_end: int | None = None

    def title_key(self) -> str:
        return normalise_key(self.title) or normalise_key(DEFAULT_GROUP_TITLE)

    def copy(self) -> Group:
        return replace(
            self,
            specs_headers=list(self.specs_headers),
            variants=[variant.copy() for variant in self.variants],
        )

    def to_dict(self, *, include_provenance: bool = True) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "specs_headers": list(self.specs_headers),
            "page_start": self.page_start,
            "page_end": self.page_end,
            "variants": [variant.to_dict(include_provenance=include_provenance) for variant in self.variants],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Group:
        return cls(
            title=normalise_whitespace(data.get("title")) or DEFAULT_GROUP_TITLE,
            category=normalise_whitespace(data.get("category")) or DEFAULT_GROUP_CATEGORY,
            specs_headers=[normalise_whitespace(h) for h in data.get("specs_headers") or [] if normalise_whitespace(h)],
            description=normalise_whitespace(data.get("description")),
            variants=[Variant.from_dict(v) for v in data.get("variants") or [] if isinstance(v, dict)],
            page_start=data.get("page_start"),
            page_end=data.get("page_end"),
        )


@dataclass(frozen=True)
class PriceConflict:
    key: str
    code: str | None
    name: str | None
    chunk_ids: tuple[str | None, str | None]
    values: tuple[float, float]
    window_indexes: tuple[int | None, int | None] = (None, None)
    page_ranges: tuple[tuple[int | None, int | None], tuple[int | None, int | None]] = ((None, None), (None, None))

    def identity(self) -> tuple[Any, ...]:
        """What makes two reports of a conflict the same report."""
        return (self.key, self.chunk_ids, self.window_indexes, self.values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "code": self.code,
            "name": self.name,
            "chunks": list(self.chunk_ids),
            "windows": list(self.window_indexes),
            "pages": [list(pages) for pages in self.page_ranges],
            "values": list(self.values),
        }
