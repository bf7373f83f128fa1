from __future__ import annotations

import re

from catalogforge.core.hashing import compute_bytes_digest
from catalogforge.core.text import normalise_whitespace
from catalogforge.domain.models.catalog import Variant

_HSN_WITH_VALUE_RE = re.compile(r"\bHSN\s*:?\s*\d{4,}\b", re.IGNORECASE)
_GST_WITH_VALUE_RE = re.compile(r"\bGST\s*:?\s*\d{1,2}(?:\.\d+)?%", re.IGNORECASE)
_HSN_LABEL_RE = re.compile(r"\bHSN\b", re.IGNORECASE)
_PRICE_TAIL_RE = re.compile(r"\b(?:INR|MRP|LP|List|Price)\b.*$", re.IGNORECASE)
_YEAR_TAIL_RE = re.compile(r"\b20\d{2}\b.*$")
_TRAILING_PUNCT_RE = re.compile(r"[|,:]+$")

_SIZE_RE = re.compile(r"\b\d+(?:\.\d+)?\s?(?:MM|CM|M|ML|L|µM|UM|G|KG)\b", re.IGNORECASE)
_PACK_RE = re.compile(r"\b\d+\s*/\s*(?:PK|PCS|PC|BTL|RL|ROL|BOX)\b|\bPK\d+\b|\b\d+PC[KS]?\b", re.IGNORECASE)
_DIMENSION_RE = re.compile(r"\b\d+(?:\.\d+)?\s*x\s*\d+(?:\.\d+)?\s*(?:MM|CM|M)\b", re.IGNORECASE)


def scrub_field(value: str | None) -> str:
    """Strip tax ids, trailing price labels and year stamps from a name cell."""
    text = normalise_whitespace(value)
    if not text:
        return ""
    text = _HSN_WITH_VALUE_RE.sub("", text)
    text = _GST_WITH_VALUE_RE.sub("", text)
    text = _HSN_LABEL_RE.sub("", text)
    text = _PRICE_TAIL_RE.sub("", text)
    text = _YEAR_TAIL_RE.sub("", text)
    text = _TRAILING_PUNCT_RE.sub("", text.strip())
    return normalise_whitespace(text)


def extract_pack(text: str | None) -> tuple[str | None, str | None]:
    """(normalized pack, raw pack) from a cell; pack counts beat dimensions beat sizes."""
    source = normalise_whitespace(text)
    if not source:
        return None, None
    for pattern in (_PACK_RE, _DIMENSION_RE, _SIZE_RE):
        match = pattern.search(source)
        if match:
            raw = match.group(0)
            return re.sub(r"\s+", "", raw).upper(), raw
    return None, None


def _dedupe_key(variant: Variant) -> str:
    price = "null" if variant.price_value is None else repr(float(variant.price_value))
    if variant.code:
        return f"{variant.code.strip().upper()}::{price}"
    if variant.name:
        digest = compute_bytes_digest(normalise_whitespace(variant.name).lower().encode("utf-8"), "sha1")
        return f"{digest}::{price}"
    return f"unknown::{price}"


def dedupe_variants(variants: list[Variant]) -> tuple[list[Variant], int]:
    """Drop repeated (identity, price) rows, keeping the better-ranked record in first-seen position."""
    ordered: list[Variant] = []
    index_by_key: dict[str, int] = {}
    duplicates = 0
    for variant in variants:
        key = _dedupe_key(variant)
        if key not in index_by_key:
            index_by_key[key] = len(ordered)
            ordered.append(variant)
            continue
        duplicates += 1
        position = index_by_key[key]
        if variant.rank() > ordered[position].rank():
            ordered[position] = variant
    return ordered, duplicates
