"""Key-value store contract consumed by the metrics engine."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class KVStore(Protocol):
    """Async key-value store.

    Values are JSON-compatible structures. There are no transactions:
    writes are last-write-wins.
    """

    async def get(self, key: str) -> Any | None:
        """Return the value stored under key, or None."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Insert or replace the value stored under key."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""
        ...

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        """Return the values of every key starting with prefix."""
        ...

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        """Return every key starting with prefix."""
        ...
