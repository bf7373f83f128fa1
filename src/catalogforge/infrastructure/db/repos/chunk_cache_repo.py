from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from catalogforge.core.errors import CacheError
from catalogforge.core.time import now_utc_iso
from catalogforge.infrastructure.db.sqlite import get_connection, initialize_schema

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    chunk_id: str
    content_hash: str
    model: str
    payload: dict[str, Any]
    created_at: str


class ChunkCacheRepo:
    """Persisted invocation results keyed by chunk id and content hash.

    Storage failures on ``get`` and ``put`` surface as ``CacheError``.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        initialize_schema(db_path)

    def get(self, chunk_id: str, content_hash: str, model: str | None = None) -> CacheEntry | None:
        try:
            with get_connection(self.db_path) as conn:
                row = conn.execute(
                    "SELECT chunk_id, content_hash, model, payload_json, created_at FROM chunk_cache WHERE chunk_id = ?",
                    (chunk_id,),
                ).fetchone()
                if row is None:
                    return None
                if row["content_hash"] != content_hash:
                    logger.info("Cache entry for %s is stale (content changed); invalidating", chunk_id)
                    conn.execute("DELETE FROM chunk_cache WHERE chunk_id = ?", (chunk_id,))
                    conn.commit()
                    return None
        except sqlite3.Error as exc:
            raise CacheError(f"Chunk cache read failed for {chunk_id}: {exc}") from exc

        if model is not None and row["model"] != model:
            return None
        try:
            payload = json.loads(row["payload_json"])
        except json.JSONDecodeError as exc:
            raise CacheError(f"Chunk cache entry for {chunk_id} is corrupt: {exc}") from exc
        return CacheEntry(
            chunk_id=row["chunk_id"],
            content_hash=row["content_hash"],
            model=row["model"],
            payload=payload,
            created_at=row["created_at"],
        )

    def put(self, chunk_id: str, content_hash: str, model: str, payload: dict[str, Any]) -> None:
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO chunk_cache (chunk_id, content_hash, model, payload_json, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(chunk_id) DO UPDATE SET
                        content_hash = excluded.content_hash,
                        model = excluded.model,
                        payload_json = excluded.payload_json,
                        created_at = excluded.created_at
                    """,
                    (chunk_id, content_hash, model, json.dumps(payload, ensure_ascii=True), now_utc_iso()),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise CacheError(f"Chunk cache write failed for {chunk_id}: {exc}") from exc

    def count(self) -> int:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM chunk_cache").fetchone()
        return int(row["n"])

    def list_entries(self, limit: int = 50) -> list[dict[str, Any]]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT chunk_id, content_hash, model, created_at, length(payload_json) AS size_bytes
                FROM chunk_cache
                ORDER BY created_at DESC, chunk_id
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def clear(self) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM chunk_cache")
            return cursor.rowcount
