from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from catalogforge.core.config import SqliteSettings, load_sqlite_settings

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def open_connection(db_path: Path, settings: SqliteSettings | None = None) -> sqlite3.Connection:
    """A WAL-mode connection with a busy timeout. The caller owns and closes it."""
    settings = settings or load_sqlite_settings()
    conn = sqlite3.connect(db_path, timeout=settings.connect_timeout_seconds)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute(f"PRAGMA busy_timeout = {int(settings.busy_timeout_ms)};")
    return conn


@contextmanager
def get_connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Scoped connection: committed on success, rolled back on error, always closed."""
    conn = open_connection(db_path)
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def initialize_schema(db_path: Path, schema_path: Path = SCHEMA_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_connection(db_path) as conn:
        conn.executescript(schema_path.read_text(encoding="utf-8"))
