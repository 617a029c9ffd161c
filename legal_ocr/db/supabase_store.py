"""Result cache on Supabase (PostgREST). DDL lives in ``db/schema.sql``."""

from __future__ import annotations

import logging

from ..config import SUPABASE_RESULTS_TABLE
from ..result_store import LIST_COLUMNS, ResultStore, build_row
from ..schema import CacheEntry, SaveResultRequest
from .supabase_client import get_client

logger = logging.getLogger(__name__)


class SupabaseResultStore(ResultStore):
    """Store rows in ``SUPABASE_RESULTS_TABLE``; ids and created_at come from the database."""

    def __init__(self, client=None, table: str = SUPABASE_RESULTS_TABLE) -> None:
        self._client = client
        self.table_name = table

    def _table(self):
        client = self._client if self._client is not None else get_client()
        return client.table(self.table_name)

    def upsert(self, user_id: str, payload: SaveResultRequest) -> CacheEntry:
        row = build_row(user_id, payload)
        resp = (
            self._table()
            .upsert(row, on_conflict="user_id,file_hash")
            .execute()
        )
        if not resp.data:
            raise RuntimeError(f"Supabase upsert returned no row for {row['file_hash']}")
        entry = CacheEntry.model_validate(resp.data[0])
        logger.info("Cached OCR result %s for user %s", entry.id, user_id)
        return entry

    def get(self, user_id: str, file_hash: str) -> CacheEntry | None:
        resp = (
            self._table()
            .select("*")
            .eq("user_id", user_id)
            .eq("file_hash", file_hash)
            .limit(1)
            .execute()
        )
        return CacheEntry.model_validate(resp.data[0]) if resp.data else None

    def list(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[CacheEntry], int]:
        page = max(1, page)
        limit = max(1, limit)
        start = (page - 1) * limit
        resp = (
            self._table()
            .select(",".join(LIST_COLUMNS), count="exact")
            .eq("user_id", user_id)
            .order("updated_at", desc=True)
            .range(start, start + limit - 1)
            .execute()
        )
        entries = [CacheEntry.model_validate(row) for row in resp.data or []]
        total = resp.count if resp.count is not None else len(entries)
        return entries, total

    def delete(self, user_id: str, entry_id: str) -> bool:
        resp = (
            self._table()
            .delete()
            .eq("id", entry_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(resp.data)
