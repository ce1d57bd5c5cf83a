"""Base repository with shared key-value store."""

from mlm.kv.base import KVStore


class BaseRepository:
    """Base class for all repositories.

    Accepts any KVStore backend. All methods should use await with the store.
    """

    def __init__(self, store: KVStore) -> None:
        self.store = store
