from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")
_NUMBER_CHARS_RE = re.compile(r"[^0-9.,-]")


def normalise_whitespace(value: object) -> str:
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def normalise_key(value: object) -> str:
    """Lowercase, map every non-alphanumeric run to one space, trim."""
    if value is None:
        return ""
    return _NON_ALNUM_RE.sub(" ", str(value).lower()).strip()


def parse_number(value: object) -> float | None:
    """Parse a price-like token, accepting both 1,234.50 and 1.234,50 forms."""
    if value is None:
        return None
    cleaned = _NUMBER_CHARS_RE.sub("", str(value).strip())
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None

    has_comma = "," in cleaned
    has_dot = "." in cleaned
    normalized = cleaned
    if has_comma and has_dot:
        if cleaned.rfind(".") > cleaned.rfind(","):
            normalized = cleaned.replace(",", "")
        else:
            normalized = cleaned.replace(".", "").replace(",", ".")
    elif has_comma:
        decimals = len(cleaned) - cleaned.rfind(",") - 1
        normalized = cleaned.replace(",", ".") if decimals == 2 else cleaned.replace(",", "")

    # Keep the leading sign and the first decimal point only.
    sign = "-" if normalized.startswith("-") else ""
    body = normalized.replace("-", "")
    if body.count(".") > 1:
        head, _, tail = body.partition(".")
        body = f"{head}.{tail.replace('.', '')}"
    try:
        return float(f"{sign}{body}")
    except ValueError:
        return None


_CURRENCY_MARKERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"₹|\bINR\b|\bRs\b\.?", re.IGNORECASE), "INR"),
    (re.compile(r"€|\bEUR\b", re.IGNORECASE), "EUR"),
    (re.compile(r"\$|\bUSD\b", re.IGNORECASE), "USD"),
    (re.compile(r"£|\bGBP\b", re.IGNORECASE), "GBP"),
)
_INR_CONTEXT_RE = re.compile(r"\b(MRP|LP|RATE)\b", re.IGNORECASE)


def detect_currency(value: str | None, context: str | None = None) -> str | None:
    """Currency code from a token and its surrounding line, if any marker is present."""
    combined = f"{value or ''} {context or ''}"
    for pattern, code in _CURRENCY_MARKERS:
        if pattern.search(combined):
            return code
    if context and _INR_CONTEXT_RE.search(context):
        return "INR"
    return None
