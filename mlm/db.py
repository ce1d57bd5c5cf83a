"""
Store Module - Supabase and Redis clients and the key namespace

Provides lazily created singletons of:
- Async Supabase client (backs the kv_store table)
- Async Upstash Redis client
- The KVStore selected by KV_BACKEND

and KVKeys, the single place where store keys are built.
"""

import os
from typing import Optional

from supabase._async.client import AsyncClient, create_client as acreate_client
from upstash_redis.asyncio import Redis as AsyncRedis

from mlm.errors import ERROR_KV_NOT_CONFIGURED
from mlm.kv.base import KVStore
from mlm.logging import get_logger

logger = get_logger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")

UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

# "supabase" (table shared with the dashboard backend) or "redis"
KV_BACKEND = os.environ.get("KV_BACKEND", "supabase").lower()
KV_TABLE = os.environ.get("KV_TABLE", "kv_store")


_async_supabase_client: Optional[AsyncClient] = None
_redis_client: Optional[AsyncRedis] = None
_kv_store: Optional[KVStore] = None


async def get_supabase() -> AsyncClient:
    """Get async Supabase client (singleton)."""
    global _async_supabase_client

    if _async_supabase_client is None:
        if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
            raise ValueError(
                f"{ERROR_KV_NOT_CONFIGURED}: SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        _async_supabase_client = await acreate_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)

    return _async_supabase_client


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
            raise ValueError(
                f"{ERROR_KV_NOT_CONFIGURED}: UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set"
            )
        _redis_client = AsyncRedis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


async def get_kv_store() -> KVStore:
    """Get the configured KVStore (singleton)."""
    global _kv_store

    if _kv_store is None:
        if KV_BACKEND == "redis":
            from mlm.kv.redis_store import RedisKVStore

            _kv_store = RedisKVStore(get_redis())
        elif KV_BACKEND == "supabase":
            from mlm.kv.supabase_store import SupabaseKVStore

            _kv_store = SupabaseKVStore(await get_supabase(), table=KV_TABLE)
        else:
            raise ValueError(f"Unknown KV_BACKEND: {KV_BACKEND!r} (expected 'supabase' or 'redis')")
        logger.info("KV store initialized: backend=%s", KV_BACKEND)

    return _kv_store


class KVKeys:
    """Key prefixes shared with the dashboard backend.

    Layout must not change: the web application reads and writes the same keys.
    """

    USER = "user:"  # every user-related record, scanned to enumerate partners
    USER_BY_ID = "user:id:"  # user:id:{partner_id}
    ORDER = "order:"  # order:{order_id}

    RANK = "rank:user:"  # rank:user:{partner_id} -> int
    METRICS = "user_metrics:"  # user_metrics:{partner_id} -> snapshot

    # Produced by the listing endpoints, only invalidated here
    USERS_PAGE = "users_page:"  # users_page:{page}:{filter}:{sort}
    ALL_USERS_LIST = "cache:all_users_list"

    @staticmethod
    def partner_key(partner_id: str) -> str:
        return f"{KVKeys.USER_BY_ID}{partner_id}"

    @staticmethod
    def rank_key(partner_id: str) -> str:
        return f"{KVKeys.RANK}{partner_id}"

    @staticmethod
    def metrics_key(partner_id: str) -> str:
        return f"{KVKeys.METRICS}{partner_id}"

    @staticmethod
    def users_page_key(page: int, filter_value: str = "", sort: str = "") -> str:
        return f"{KVKeys.USERS_PAGE}{page}:{filter_value}:{sort}"
