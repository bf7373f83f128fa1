from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from catalogforge.core.text import normalise_whitespace, parse_number
from catalogforge.domain.models.catalog import Group, Variant
from catalogforge.domain.models.extraction import ExtractionOutcome, PatternAttempt
from catalogforge.infrastructure.extractors.fields import dedupe_variants
from catalogforge.infrastructure.extractors.lines import Line
from catalogforge.infrastructure.extractors.pattern_registry import (
    ColumnPattern,
    CurrencyRules,
    PackRule,
    PatternRegistry,
)

logger = logging.getLogger(__name__)

_COLUMN_SPLIT_RE = re.compile(r"\s{2,}|\t|\s\|\s")
_SEGMENT_PRICE_RE = re.compile(r"(?:₹|Rs\.?|INR|€|EUR|\$|USD)?\s*(?:\d{1,3}(?:,\d{3})+|\d{2,})(?:\.\d+)?(?!\s*%)", re.IGNORECASE)
_SEGMENT_CODE_RE = re.compile(r"[A-Z0-9]{3,}(?:-[A-Z0-9]+)+|\b\d{6,}\b|\b\d{4,}-\d{2,}\b|\b[A-Z]{2,}\d{3,}\b")


def split_columns(text: str) -> list[str]:
    trimmed = (text or "").strip()
    if not trimmed:
        return []
    parts = [part.strip() for part in _COLUMN_SPLIT_RE.split(trimmed) if part.strip()]
    return parts if len(parts) > 1 else [trimmed]


def segment_by_price_and_code(text: str) -> list[str]:
    """Split a line holding several code...price records into one fragment per record."""
    fragments: list[str] = []
    last_end = 0
    for price in _SEGMENT_PRICE_RE.finditer(text):
        codes = list(_SEGMENT_CODE_RE.finditer(text, last_end, price.start()))
        if not codes:
            continue
        fragment = text[codes[-1].start() : price.end()].strip()
        if fragment:
            fragments.append(fragment)
            last_end = price.end()
    return fragments


def align_tokens(tokens: list[str], column_count: int) -> list[str]:
    if column_count <= 1:
        return [" ".join(tokens)]
    if len(tokens) == column_count:
        return tokens
    if len(tokens) > column_count:
        return tokens[: column_count - 1] + [" ".join(tokens[column_count - 1 :])]
    return tokens + [""] * (column_count - len(tokens))


def normalise_pack(value: str, rules: tuple[PackRule, ...]) -> str:
    raw = normalise_whitespace(value)
    for rule in rules:
        match = rule.pattern.search(raw)
        if match:
            return rule.pattern.sub(rule.format, raw) if rule.format else match.group(0)
    return raw


def read_price(value: str, rules: CurrencyRules) -> tuple[float | None, str | None]:
    amount = parse_number(value)
    if not value:
        return amount, rules.default
    lowered = value.lower()
    for symbol, code in rules.symbols.items():
        if symbol in value or symbol.lower() in lowered:
            return amount, code
    for key, code in rules.codes.items():
        if key in lowered:
            return amount, code
    return amount, rules.default if amount is not None else None


def row_confidence(variant: Variant) -> float:
    confidence = 0.35
    if variant.name:
        confidence += 0.25
    if variant.price_value is not None:
        confidence += 0.25
    for value in (variant.code, variant.pack, variant.cas, variant.currency):
        if value:
            confidence += 0.05
    return min(0.99, round(confidence, 4))


@dataclass(slots=True)
class PatternTrial:
    pattern: ColumnPattern
    variants: list[Variant] = field(default_factory=list)
    leftovers: list[str] = field(default_factory=list)
    reason: str = "header_not_found"
    header_index: int = -1


class PatternEngine:
    """Tries registered column patterns against a line view until one yields rows."""

    def __init__(self, registry: PatternRegistry) -> None:
        self.registry = registry

    @staticmethod
    def is_header_match(text: str, pattern: ColumnPattern) -> bool:
        lower = text.lower()
        matched = 0
        required = [column for column in pattern.columns if column.required]
        for column in pattern.columns:
            hit = any(keyword in lower for keyword in column.header_keywords)
            if hit:
                matched += 1
            elif column.required:
                return False
        if required:
            return True
        return matched >= max(1, len(pattern.columns) // 2)

    def build_row(self, tokens: list[str], pattern: ColumnPattern, line: Line) -> Variant:
        aligned = align_tokens(tokens, len(pattern.columns))
        variant = Variant(extras={"source_page": line.page_number})
        for column, cell in zip(pattern.columns, aligned):
            value = normalise_whitespace(cell)
            if not value:
                continue
            if column.role in ("code", "cas", "hsn"):
                if column.accepts(value):
                    setattr(variant, column.role, value)
            elif column.role == "name":
                variant.name = value
            elif column.role == "pack":
                variant.pack = normalise_pack(value, pattern.pack_rules)
                variant.pack_raw = value
            elif column.role == "price":
                amount, currency = read_price(value, pattern.currency)
                if amount is not None:
                    variant.price_value = amount
                if currency:
                    variant.currency = currency
            elif column.role == "currency":
                variant.currency = value.upper()
            elif column.role == "gst":
                variant.gst_percent = parse_number(value)
            elif column.role == "notes":
                variant.notes = value
        variant.confidence = row_confidence(variant)
        variant.refresh_fields_present()
        return variant

    @staticmethod
    def _has_required(variant: Variant, pattern: ColumnPattern) -> bool:
        for role in pattern.required_roles:
            attribute = {"price": "price_value", "gst": "gst_percent"}.get(role, role)
            value = getattr(variant, attribute, None)
            if value is None or value == "":
                return False
        return True

    def try_pattern(self, pattern: ColumnPattern, lines: list[Line]) -> PatternTrial:
        trial = PatternTrial(pattern=pattern)
        header_index = next((i for i, line in enumerate(lines) if self.is_header_match(line.text, pattern)), -1)
        if header_index < 0:
            return trial
        trial.header_index = header_index
        header_text = normalise_whitespace(lines[header_index].text).lower()

        data_lines: list[Line] = []
        for line in lines[header_index + 1 :]:
            fragments = segment_by_price_and_code(line.text)
            if len(fragments) > 1:
                data_lines.extend(line.with_text(fragment) for fragment in fragments)
            else:
                data_lines.append(line)

        last: Variant | None = None
        for line in data_lines:
            tokens = split_columns(line.text)
            # Page breaks repeat the header row.
            if not tokens or normalise_whitespace(line.text).lower() == header_text:
                continue
            variant = self.build_row(tokens, pattern, line)
            if self._has_required(variant, pattern) and variant.confidence >= pattern.min_confidence:
                trial.variants.append(variant)
                last = variant
                continue
            # Continuation lines carry more of the previous product's name.
            if last is not None and variant.price_value is None:
                last.name = normalise_whitespace(f"{last.name or ''} {line.text}")
                last.confidence = min(0.99, round(last.confidence + 0.05, 4))
                last.refresh_fields_present()
                continue
            trial.leftovers.append(line.text)

        trial.reason = "matched" if trial.variants else "no_rows"
        return trial

    def match(
        self,
        lines: list[Line],
        *,
        preferred_patterns: tuple[str, ...] | list[str] = (),
        doc_id: str | None = None,
    ) -> ExtractionOutcome:
        candidates = self.registry.ordered(preferred_patterns)
        attempts: list[PatternAttempt] = []
        for pattern in candidates:
            trial = self.try_pattern(pattern, lines)
            attempts.append(PatternAttempt(pattern_id=pattern.id, matched_rows=len(trial.variants), reason=trial.reason))
            if not trial.variants:
                continue

            variants, duplicates = dedupe_variants(trial.variants)
            pages = [v.extras["source_page"] for v in variants if isinstance(v.extras.get("source_page"), int)]
            logger.debug("Pattern %s matched %s row(s)", pattern.id, len(variants))
            group = Group(
                title=pattern.description,
                category="general",
                variants=variants,
                page_start=min(pages) if pages else None,
                page_end=max(pages) if pages else None,
            )
            return ExtractionOutcome(
                groups=[group],
                warnings=[],
                diagnostics={
                    "engine": "pattern_registry",
                    "doc_id": doc_id,
                    "matched_pattern": pattern.id,
                    "matched_rows": len(variants),
                    "attempts": [attempt.to_dict() for attempt in attempts],
                    "leftovers": trial.leftovers,
                    "duplicates_removed": duplicates,
                },
            )

        return ExtractionOutcome(
            groups=[],
            warnings=["pattern_registry_no_match"],
            diagnostics={
                "engine": "pattern_registry",
                "doc_id": doc_id,
                "matched_pattern": None,
                "matched_rows": 0,
                "attempts": [attempt.to_dict() for attempt in attempts],
                "leftovers": [line.text for line in lines],
            },
        )

