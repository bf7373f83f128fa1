from __future__ import annotations

import hashlib


def compute_bytes_digest(data: bytes, alg: str = "sha256") -> str:
    h = hashlib.new(alg)
    h.update(data)
    return h.hexdigest()


def compute_text_digest(parts: list[str], alg: str = "sha256") -> str:
    """Digest a sequence of text fragments, in order, as UTF-8."""
    h = hashlib.new(alg)
    for part in parts:
        h.update(part.encode("utf-8"))
    return h.hexdigest()
