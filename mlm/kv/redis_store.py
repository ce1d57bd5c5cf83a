"""KVStore backed by Upstash Redis.

Values are stored as JSON strings. Prefix scans use SCAN MATCH followed by
MGET, so they are not atomic with concurrent writers.
"""
import json
from typing import Any

from upstash_redis.asyncio import Redis as AsyncRedis

from mlm.errors import KVStoreError
from mlm.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)

SCAN_COUNT = 500
MGET_CHUNK = 100


def _escape_glob(prefix: str) -> str:
    """Escape glob metacharacters for SCAN MATCH."""
    for char in ("\\", "*", "?", "[", "]"):
        prefix = prefix.replace(char, f"\\{char}")
    return prefix


class RedisKVStore:
    """Key-value operations over an async Upstash Redis client."""

    def __init__(self, redis: AsyncRedis) -> None:
        self.redis = redis

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            raise KVStoreError("get", key, e) from e
        return self._decode(key, raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.redis.set(key, json.dumps(value, ensure_ascii=False))
        except Exception as e:
            raise KVStoreError("set", key, e) from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except Exception as e:
            raise KVStoreError("delete", key, e) from e

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        pattern = f"{_escape_glob(prefix)}*"
        keys: list[str] = []
        seen: set[str] = set()
        cursor = 0

        try:
            while True:
                cursor, batch = await self.redis.scan(
                    cursor, match_pattern=pattern, count=SCAN_COUNT
                )
                # SCAN may return a key more than once
                for key in batch:
                    if key not in seen:
                        seen.add(key)
                        keys.append(key)
                cursor = int(cursor)
                if cursor == 0:
                    break
        except Exception as e:
            raise KVStoreError("scan", prefix, e) from e

        return keys

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        keys = await self.keys_by_prefix(prefix)
        values: list[Any] = []

        for i in range(0, len(keys), MGET_CHUNK):
            chunk = keys[i:i + MGET_CHUNK]
            try:
                raw_values = await self.redis.mget(*chunk)
            except Exception as e:
                raise KVStoreError("mget", prefix, e) from e

            for key, raw in zip(chunk, raw_values):
                value = self._decode(key, raw)
                # Deleted between SCAN and MGET
                if value is not None:
                    values.append(value)

        return values

    @staticmethod
    def _decode(key: str, raw: Any) -> Any | None:
        if raw is None:
            return None
        if not isinstance(raw, (str, bytes, bytearray)):
            return raw
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Corrupted JSON under key %s: %s", sanitize_id_for_logging(key, 40), e)
            return None
