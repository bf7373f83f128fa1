from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from catalogforge.core.text import detect_currency, parse_number
from catalogforge.domain.models.catalog import Group, Variant
from catalogforge.domain.models.extraction import ExtractionOutcome
from catalogforge.domain.models.page import Page
from catalogforge.infrastructure.extractors.fields import dedupe_variants, extract_pack, scrub_field
from catalogforge.infrastructure.extractors.lines import Line, page_currency_hints, recovery_lines

logger = logging.getLogger(__name__)

RECOVERY_GROUP_TITLE = "Price anchored recovery"
DEFAULT_MINIMUM_CONFIDENCE = 0.5

HEADER_KEYWORDS = ("cat no", "description", "hsn", "gst", "price", "inr", "lp")

# A price is a standalone 2-7 digit amount: not glued to a code, a percentage or a unit.
# The Indian "250/-" form keeps its trailing "/-".
PRICE_TOKEN_RE = re.compile(
    r"(?<![\w./-])"
    r"(?:(₹|Rs\.?|INR|MRP|LP|Rate|USD|\$|EUR|€)\s*)?"
    r"((?:\d{1,3}(?:,\d{3})+|\d{2,})(?:[.,]\d+)?)(?:/-)?"
    r"(?![\w%/-])(?!\s*%)(?!\s?(?:ml|l|g|kg|mm|cm|m|pk|pcs|pc)\b)",
    re.IGNORECASE,
)
HYPHEN_SKU_RE = re.compile(r"\b[A-Z0-9]{2,}-[A-Z0-9]{2,}\b")
NUMERIC_SKU_RE = re.compile(r"\b\d{5,}\b")
HSN_LABEL_RE = re.compile(r"\bHSN\s*[:\-]?\s*(\d{8})\b", re.IGNORECASE)
HSN_RE = re.compile(r"\b\d{8}\b")
GST_LABEL_RE = re.compile(r"\bGST\s*[:\-]?\s*(\d{1,2}(?:\.\d+)?)%", re.IGNORECASE)
GST_VALUE_RE = re.compile(r"\b(\d{1,2}(?:\.\d+)?)%")
PACK_PATTERNS = (
    re.compile(r"\b\d+\s*/\s*(?:PK|PCS|PC|BTL|RL|ROL|BOX)\b", re.IGNORECASE),
    re.compile(r"\b\d+(?:\.\d+)?\s?(?:ml|l|g|kg|mm|cm)\b", re.IGNORECASE),
    re.compile(r"\b\d+(?:\.\d+)?M\b", re.IGNORECASE),
    re.compile(r"\b\d+(?:\.\d+)?\s*x\s*\d+(?:\.\d+)?(?:mm|cm)\b", re.IGNORECASE),
)

Span = tuple[int, int]


@dataclass(frozen=True)
class PriceToken:
    start: int
    end: int
    raw: str
    amount: float
    currency: str | None


def is_header_line(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in HEADER_KEYWORDS)


def find_price_tokens(text: str) -> list[PriceToken]:
    tokens: list[PriceToken] = []
    for match in PRICE_TOKEN_RE.finditer(text):
        digits = re.sub(r"\D", "", match.group(2))
        if not 2 <= len(digits) <= 7:
            continue
        amount = parse_number(match.group(2))
        if amount is None:
            continue
        tokens.append(
            PriceToken(
                start=match.start(),
                end=match.end(),
                raw=match.group(0),
                amount=amount,
                currency=detect_currency(match.group(0), text),
            )
        )
    return tokens


def _token_layout(tokens: list[str]) -> list[Span]:
    layout: list[Span] = []
    offset = 0
    for token in tokens:
        layout.append((offset, offset + len(token)))
        offset += len(token) + 1
    return layout


def _indexes_for(span: Span | None, layout: list[Span]) -> list[int]:
    if span is None:
        return []
    start, end = span
    return [index for index, (a, b) in enumerate(layout) if a < end and b > start]


def _find_hsn(text: str) -> tuple[str | None, Span | None]:
    labelled = HSN_LABEL_RE.search(text)
    if labelled:
        return labelled.group(1), labelled.span(1)
    match = HSN_RE.search(text)
    if match:
        return match.group(0), match.span()
    return None, None


def _find_gst(text: str) -> tuple[float | None, Span | None]:
    labelled = GST_LABEL_RE.search(text)
    if labelled:
        return float(labelled.group(1)), (labelled.start(1), labelled.end(1) + 1)
    match = GST_VALUE_RE.search(text)
    if match:
        return float(match.group(1)), match.span()
    return None, None


def _find_pack(text: str) -> Span | None:
    spans = [match.span() for pattern in PACK_PATTERNS for match in pattern.finditer(text)]
    if not spans:
        return None
    return sorted(spans)[-1]


def _find_code(text: str, hsn_span: Span | None) -> tuple[str | None, Span | None]:
    hyphen = HYPHEN_SKU_RE.search(text)
    if hyphen:
        return hyphen.group(0), hyphen.span()
    for match in NUMERIC_SKU_RE.finditer(text):
        if len(match.group(0)) == 8:
            continue
        if hsn_span and hsn_span[0] <= match.start() < hsn_span[1]:
            continue
        return match.group(0), match.span()
    return None, None


class PriceAnchoredExtractor:
    """Last-resort recovery: anchor each row on its rightmost price and mine the text to its left."""

    def __init__(self, *, minimum_confidence: float = DEFAULT_MINIMUM_CONFIDENCE) -> None:
        self.minimum_confidence = minimum_confidence

    def build_variant(
        self,
        line: Line,
        *,
        header_seen: bool,
        currency_hint: str | None = None,
    ) -> Variant | None:
        prices = find_price_tokens(line.text)
        if not prices:
            return None
        price = prices[-1]

        tokens = line.text[: price.start].split()
        layout = _token_layout(tokens)
        normalized = " ".join(tokens)

        hsn, hsn_span = _find_hsn(normalized)
        gst, gst_span = _find_gst(normalized)
        pack_span = _find_pack(normalized)
        pack, pack_raw = extract_pack(normalized[pack_span[0] : pack_span[1]]) if pack_span else (None, None)
        code, code_span = _find_code(normalized, hsn_span)
        if code and HSN_RE.fullmatch(code):
            code, code_span = None, None

        hsn_indexes = _indexes_for(hsn_span, layout)
        gst_indexes = _indexes_for(gst_span, layout)
        code_indexes = _indexes_for(code_span, layout)
        pack_indexes = _indexes_for(pack_span, layout)

        start = 0
        if code_indexes:
            start = max(code_indexes) + 1
        else:
            while start < len(tokens) and (start in hsn_indexes or start in gst_indexes):
                start += 1
        end = min(pack_indexes) if pack_indexes else len(tokens)
        excluded = set(hsn_indexes) | set(gst_indexes)
        name = scrub_field(" ".join(tokens[i] for i in range(start, end) if i not in excluded))
        if not name:
            return None

        currency = price.currency or currency_hint
        confidence = 0.25 + 0.35
        if code:
            confidence += 0.15
        if pack:
            confidence += 0.1
        if hsn:
            confidence += 0.05
        if gst is not None:
            confidence += 0.05
        if currency:
            confidence += 0.05
        if len(prices) > 1:
            confidence -= 0.15
        if not header_seen:
            confidence -= 0.15
        confidence = min(0.99, max(0.05, round(confidence, 4)))

        variant = Variant(
            code=code,
            name=name,
            pack=pack,
            pack_raw=pack_raw,
            hsn=hsn,
            gst_percent=gst,
            price_value=price.amount,
            currency=currency,
            confidence=confidence,
            extras={"source_page": line.page_number},
        )
        variant.refresh_fields_present()
        return variant

    def extract(
        self,
        pages: list[Page] | tuple[Page, ...],
        *,
        minimum_confidence: float | None = None,
        doc_id: str | None = None,
    ) -> ExtractionOutcome:
        threshold = self.minimum_confidence if minimum_confidence is None else minimum_confidence
        lines = recovery_lines(pages)
        header_index = next((i for i, line in enumerate(lines) if is_header_line(line.text)), -1)
        header_seen = header_index >= 0

        process: list[Line] = []
        seen_data = False
        for line in lines[header_index + 1 :] if header_seen else lines:
            if not seen_data and is_header_line(line.text):
                continue
            seen_data = True
            process.append(line)

        hints = page_currency_hints(pages)
        accepted: list[Variant] = []
        leftovers: list[str] = []
        low_confidence: list[dict[str, object]] = []
        carryover = ""

        for line in process:
            variant = self.build_variant(line, header_seen=header_seen, currency_hint=hints.get(line.page_number))
            if variant is None:
                carryover = f"{carryover} {line.text}".strip()
                leftovers.append(line.text)
                continue

            if carryover:
                combined = scrub_field(f"{carryover} {variant.name or ''}")
                if combined:
                    variant.name = combined
                    variant.confidence = min(0.99, round(variant.confidence + 0.05, 4))
                carryover = ""

            if variant.confidence < threshold:
                low_confidence.append(
                    {
                        "reason": "low_confidence",
                        "confidence": variant.confidence,
                        "page": line.page_number,
                        "source": line.text,
                    }
                )
                continue
            accepted.append(variant)

        variants, duplicates = dedupe_variants(accepted)
        diagnostics: dict[str, object] = {
            "engine": "price_anchored",
            "doc_id": doc_id,
            "header_seen": header_seen,
            "matched_rows": len(variants),
            "low_confidence": low_confidence,
            "leftovers": leftovers,
            "rows_unmatched_sample": leftovers[:5],
            "duplicates_removed": duplicates,
        }
        logger.debug(
            "Price-anchored recovery kept %s row(s), %s below %.2f, %s leftover line(s)",
            len(variants),
            len(low_confidence),
            threshold,
            len(leftovers),
        )
        if not variants:
            return ExtractionOutcome(groups=[], warnings=["price_anchored_no_match"], diagnostics=diagnostics)

        pages_seen = [v.extras.get("source_page") for v in variants if isinstance(v.extras.get("source_page"), int)]
        group = Group(
            title=RECOVERY_GROUP_TITLE,
            category="general",
            variants=variants,
            page_start=min(pages_seen) if pages_seen else None,
            page_end=max(pages_seen) if pages_seen else None,
        )
        return ExtractionOutcome(groups=[group], warnings=[], diagnostics=diagnostics)
