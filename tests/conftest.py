"""Pytest configuration and fixtures"""
import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import Mock, AsyncMock

import pytest

# Set test environment variables
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test_key")
os.environ.setdefault("CRON_SECRET", "test_cron_secret")

from mlm.config import EngineSettings
from mlm.errors import KVStoreError
from mlm.services.domains import MetricsService, RankService
from mlm.services.repositories import PartnerRepository


class InMemoryKVStore:
    """Dict-backed KVStore used by the service tests.

    Values go through a JSON round trip on the way in and out, like they
    do with the real backends.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail_keys: set[str] = set()
        self.fail_prefixes: set[str] = set()
        self.get_calls: list[str] = []

    def _check(self, operation: str, key: str) -> None:
        if key in self.fail_keys:
            raise KVStoreError(operation, key, RuntimeError("simulated outage"))

    async def get(self, key: str) -> Any | None:
        self.get_calls.append(key)
        self._check("get", key)
        raw = self.data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._check("set", key)
        self.data[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        self.data.pop(key, None)

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        if prefix in self.fail_prefixes:
            raise KVStoreError("scan", prefix, RuntimeError("simulated outage"))
        return sorted(k for k in self.data if k.startswith(prefix))

    async def get_by_prefix(self, prefix: str) -> list[Any]:
        keys = await self.keys_by_prefix(prefix)
        return [json.loads(self.data[k]) for k in keys]

    # ---- sync helpers for arranging test data ----

    def put(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)

    def read(self, key: str) -> Any | None:
        raw = self.data.get(key)
        return None if raw is None else json.loads(raw)

    def put_partner(self, partner_id: str, team=None, sponsor=None, **fields) -> dict:
        record = {"id": partner_id, "sponsorId": sponsor, "team": list(team or []), **fields}
        self.put(f"user:id:{partner_id}", record)
        return record

    def put_order(self, order_id: str, buyer_id: str, total, created_at: datetime | None) -> dict:
        record = {
            "id": order_id,
            "buyerId": buyer_id,
            "total": total,
            "createdAt": created_at.isoformat() if created_at else None,
        }
        self.put(f"order:{order_id}", record)
        return record

    def put_tree(self, tree: dict[str, list[str]]) -> None:
        """Store partners from {id: team}; sponsors are derived from the teams."""
        sponsors = {child: parent for parent, team in tree.items() for child in team}
        for partner_id, team in tree.items():
            self.put_partner(partner_id, team=team, sponsor=sponsors.get(partner_id))


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

# A: team=[B, C], B: team=[D], C and D leaves
EXAMPLE_TREE = {"A": ["B", "C"], "B": ["D"], "C": [], "D": []}


@pytest.fixture
def store():
    """Empty in-memory store"""
    return InMemoryKVStore()


@pytest.fixture
def example_store(store):
    """Store holding the four-partner example structure"""
    store.put_tree(EXAMPLE_TREE)
    return store


@pytest.fixture
def settings():
    """Default engine settings"""
    return EngineSettings()


@pytest.fixture
def clock():
    """Frozen clock at NOW"""
    return FrozenClock(NOW)


@pytest.fixture
def repo(store):
    return PartnerRepository(store)


@pytest.fixture
def rank_service(repo, settings):
    return RankService(repo, settings)


@pytest.fixture
def metrics_service(repo, rank_service, settings, clock):
    return MetricsService(repo, rank_service, settings, clock=clock)


@pytest.fixture
def mock_supabase_client():
    """Mock async Supabase client; every builder call returns the same table mock"""
    client = Mock()

    table_mock = Mock()
    table_mock.select.return_value = table_mock
    table_mock.upsert.return_value = table_mock
    table_mock.delete.return_value = table_mock
    table_mock.eq.return_value = table_mock
    table_mock.like.return_value = table_mock
    table_mock.order.return_value = table_mock
    table_mock.limit.return_value = table_mock
    table_mock.range.return_value = table_mock
    table_mock.execute = AsyncMock(return_value=Mock(data=[]))

    client.table.return_value = table_mock
    return client


@pytest.fixture
def mock_redis():
    """Mock async Upstash Redis client"""
    redis = Mock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.scan = AsyncMock(return_value=[0, []])
    redis.mget = AsyncMock(return_value=[])
    return redis
