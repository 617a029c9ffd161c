"""Result cache: one stored extraction per (user, file identity).

The cache key is ``compute_file_hash(user_id, file_name, file_size)``. The
backing store enforces uniqueness of ``(user_id, file_hash)``; writes are
upserts, so resubmitting a file updates its row instead of adding one.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path

from .config import RESULT_STORE_BACKEND, RESULT_STORE_PATH
from .schema import CacheEntry, SaveResultRequest
from .utils import compute_file_hash, count_words

logger = logging.getLogger(__name__)

# Columns returned by list(); text and html are left out to keep pages small.
LIST_COLUMNS: tuple[str, ...] = (
    "id", "user_id", "file_name", "file_size", "file_type", "file_hash",
    "confidence", "pages", "method", "processing_time", "text_length",
    "word_count", "created_at", "updated_at",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_row(user_id: str, payload: SaveResultRequest, now: datetime | None = None) -> dict:
    """Return the writable columns of a cache row (no id, no created_at)."""
    now = now or utcnow()
    return {
        "user_id": user_id,
        "file_name": payload.file_name,
        "file_size": payload.file_size,
        "file_type": payload.file_type,
        "file_hash": compute_file_hash(user_id, payload.file_name, payload.file_size),
        "text": payload.text,
        "html": payload.html,
        "confidence": payload.confidence,
        "pages": payload.pages,
        "method": payload.method,
        "processing_time": payload.processing_time,
        "text_length": payload.text_length if payload.text_length is not None else len(payload.text),
        "word_count": payload.word_count if payload.word_count is not None else count_words(payload.text),
        "updated_at": now.isoformat(timespec="microseconds"),
    }


class ResultStore(ABC):
    """Persistence interface for cached extraction results."""

    @abstractmethod
    def upsert(self, user_id: str, payload: SaveResultRequest) -> CacheEntry:
        """Insert or update the entry for ``(user_id, file_hash)``."""

    @abstractmethod
    def get(self, user_id: str, file_hash: str) -> CacheEntry | None:
        ...

    @abstractmethod
    def list(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[CacheEntry], int]:
        """Return one page of entries (newest first, without text) and the total."""

    @abstractmethod
    def delete(self, user_id: str, entry_id: str) -> bool:
        """Delete the caller's entry; False when it does not exist."""

    def check(self, user_id: str, file_name: str, file_size: int) -> CacheEntry | None:
        return self.get(user_id, compute_file_hash(user_id, file_name, file_size))


_SCHEMA = """
CREATE TABLE IF NOT EXISTS ocr_results (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    file_type TEXT NOT NULL,
    file_hash TEXT NOT NULL,
    text TEXT NOT NULL,
    html TEXT NOT NULL DEFAULT '',
    confidence REAL NOT NULL DEFAULT 0,
    pages INTEGER NOT NULL DEFAULT 1,
    method TEXT NOT NULL DEFAULT 'ocr',
    processing_time TEXT NOT NULL DEFAULT '',
    text_length INTEGER NOT NULL DEFAULT 0,
    word_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, file_hash)
);
CREATE INDEX IF NOT EXISTS idx_ocr_results_user_updated
    ON ocr_results (user_id, updated_at DESC);
"""


class SqliteResultStore(ResultStore):
    """SQLite-backed cache. Opens a short-lived connection per call."""

    def __init__(self, path: str | Path = RESULT_STORE_PATH) -> None:
        self.path = str(path)
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def upsert(self, user_id: str, payload: SaveResultRequest) -> CacheEntry:
        row = build_row(user_id, payload)
        row["id"] = uuid.uuid4().hex
        row["created_at"] = row["updated_at"]
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        updates = ", ".join(
            f"{name} = excluded.{name}"
            for name in row
            if name not in ("id", "user_id", "file_hash", "created_at")
        )
        with closing(self._connect()) as conn, conn:
            conn.execute(
                f"INSERT INTO ocr_results ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT (user_id, file_hash) DO UPDATE SET {updates}",
                row,
            )
            stored = conn.execute(
                "SELECT * FROM ocr_results WHERE user_id = ? AND file_hash = ?",
                (user_id, row["file_hash"]),
            ).fetchone()
        logger.info("Cached OCR result %s for user %s", stored["id"], user_id)
        return CacheEntry.model_validate(dict(stored))

    def get(self, user_id: str, file_hash: str) -> CacheEntry | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM ocr_results WHERE user_id = ? AND file_hash = ?",
                (user_id, file_hash),
            ).fetchone()
        return CacheEntry.model_validate(dict(row)) if row is not None else None

    def list(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[CacheEntry], int]:
        page = max(1, page)
        limit = max(1, limit)
        with closing(self._connect()) as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM ocr_results WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {', '.join(LIST_COLUMNS)} FROM ocr_results WHERE user_id = ? "
                "ORDER BY updated_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (user_id, limit, (page - 1) * limit),
            ).fetchall()
        return [CacheEntry.model_validate(dict(r)) for r in rows], total

    def delete(self, user_id: str, entry_id: str) -> bool:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "DELETE FROM ocr_results WHERE id = ? AND user_id = ?", (entry_id, user_id)
            )
        return cursor.rowcount > 0


_store: ResultStore | None = None
_store_lock = threading.Lock()


def create_result_store(backend: str = RESULT_STORE_BACKEND) -> ResultStore:
    if backend == "sqlite":
        return SqliteResultStore(RESULT_STORE_PATH)
    if backend == "supabase":
        from .db.supabase_store import SupabaseResultStore

        return SupabaseResultStore()
    raise RuntimeError(
        f"Unknown RESULT_STORE_BACKEND '{backend}'. Use 'sqlite' or 'supabase'."
    )


def get_result_store() -> ResultStore:
    """Return the process-wide result store, creating it on first use."""
    global _store
    with _store_lock:
        if _store is None:
            _store = create_result_store()
            logger.info("Result cache backend: %s", type(_store).__name__)
        return _store


def reset_result_store() -> None:
    """Drop the cached store (useful for testing)."""
    global _store
    with _store_lock:
        _store = None
