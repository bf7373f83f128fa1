from __future__ import annotations

import re

from catalogforge.core.hashing import compute_text_digest

_CHUNK_PREFIX_RE = re.compile(r"[^a-z0-9-]")
_MAX_PLAIN_PREFIX = 32


def chunk_prefix_for(doc_id: str | None) -> str:
    """Readable chunk-id prefix that stays unique per document id.

    Ids that are already lowercase slugs of modest length are used as-is;
    anything that had to be cleaned or shortened gets a digest suffix of the
    full id, so distinct documents never share a prefix.
    """
    if not doc_id:
        return "doc"
    cleaned = _CHUNK_PREFIX_RE.sub("", doc_id.lower())
    if cleaned == doc_id and len(cleaned) <= _MAX_PLAIN_PREFIX:
        return cleaned
    digest = compute_text_digest([doc_id])[:8]
    return f"{cleaned[:23]}-{digest}" if cleaned else digest


def chunk_id_for(doc_id: str | None, ordinal: int) -> str:
    """Stable chunk identifier from document identity and zero-based ordinal."""
    return f"{chunk_prefix_for(doc_id)}-chunk-{ordinal + 1:03d}"
