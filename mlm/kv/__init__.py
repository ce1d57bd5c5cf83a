"""Key-value store contract and backends."""
from .base import KVStore
from .redis_store import RedisKVStore
from .supabase_store import SupabaseKVStore

__all__ = [
    "KVStore",
    "RedisKVStore",
    "SupabaseKVStore",
]
