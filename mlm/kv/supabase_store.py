"""KVStore backed by a Supabase table.

The dashboard backend keeps all of its records in a single table with a
text primary key and a jsonb value:

    create table kv_store (key text primary key, value jsonb not null);

All methods use async/await with supabase-py v2.
"""

from typing import Any

from supabase._async.client import AsyncClient

from mlm.errors import KVStoreError
from mlm.logging import get_logger

logger = get_logger(__name__)

# PostgREST caps a single select at 1000 rows by default
PAGE_SIZE = 1000


def _escape_like(prefix: str) -> str:
    """Escape LIKE wildcards so the prefix matches literally."""
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SupabaseKVStore:
    """Key-value operations over a Supabase key/value table."""

    def __init__(self, client: AsyncClient, table: str = "kv_store") -> None:
        self.client = client
        self.table = table

    async def get(self, key: str) -> Any | None:
        try:
            result = (
                await self.client.table(self.table)
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise KVStoreError("get", key, e) from e
        return result.data[0]["value"] if result.data else None

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.table(self.table).upsert({"key": key, "value": value}).execute()
        except Exception as e:
            raise KVStoreError("set", key, e) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.table(self.table).delete().eq("key", key).execute()
        except Exception as e:
            raise KVStoreError("delete", key, e) from e

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        rows = await self._scan(prefix, "key, value")
        return [row["value"] for row in rows]

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        rows = await self._scan(prefix, "key")
        return [row["key"] for row in rows]

    async def _scan(self, prefix: str, columns: str) -> list[dict]:
        """Read every row whose key starts with prefix, one page at a time."""
        pattern = f"{_escape_like(prefix)}%"
        rows: list[dict] = []
        start = 0

        while True:
            try:
                result = (
                    await self.client.table(self.table)
                    .select(columns)
                    .like("key", pattern)
                    .order("key")
                    .range(start, start + PAGE_SIZE - 1)
                    .execute()
                )
            except Exception as e:
                raise KVStoreError("scan", prefix, e) from e

            page = result.data or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            start += PAGE_SIZE

        logger.debug("Prefix scan %s returned %s rows", prefix, len(rows))
        return rows
