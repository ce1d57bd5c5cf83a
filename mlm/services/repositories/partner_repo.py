"""Partner Repository - typed access to partner, order and cache keys.

Every store key used by the engine is built through KVKeys here; services
never concatenate keys themselves.
"""

from typing import Any

from mlm.db import KVKeys
from mlm.logging import get_logger, sanitize_id_for_logging
from mlm.services.models import Order, Partner, UserMetrics

from .base import BaseRepository

logger = get_logger(__name__)

# Rank field name used by records created before the English schema
LEGACY_RANK_FIELD = "уровень"


class PartnerRepository(BaseRepository):
    """Partner records, orders and the rank/metrics/page caches."""

    # ==================== PARTNERS ====================

    async def get_partner_record(self, partner_id: str) -> dict | None:
        """Raw partner record, unknown fields included."""
        record = await self.store.get(KVKeys.partner_key(partner_id))
        return record if isinstance(record, dict) else None

    async def get_partner(self, partner_id: str) -> Partner | None:
        """Get partner by ID. Malformed records are treated as missing."""
        record = await self.get_partner_record(partner_id)
        if record is None:
            return None
        partner = Partner.from_record(record)
        if partner is None:
            logger.warning("Malformed partner record: %s", sanitize_id_for_logging(partner_id))
        return partner

    async def save_partner_rank(self, partner_id: str, rank: int) -> bool:
        """Write rank into the stored partner record. False if the record is absent."""
        record = await self.get_partner_record(partner_id)
        if record is None:
            return False

        record["rank"] = rank
        if LEGACY_RANK_FIELD in record:
            record[LEGACY_RANK_FIELD] = rank

        await self.store.set(KVKeys.partner_key(partner_id), record)
        return True

    async def list_partners(self) -> list[Partner]:
        """All partner records found under the user: prefix.

        The prefix also holds lookup entries (e.g. email -> id) that are not
        partner records; those are skipped. Duplicates keep the first copy.
        """
        values = await self.store.get_by_prefix(KVKeys.USER)
        partners: list[Partner] = []
        seen: set[str] = set()

        for value in values:
            partner = Partner.from_record(value)
            if partner is None or partner.id in seen:
                continue
            seen.add(partner.id)
            partners.append(partner)

        return partners

    async def list_orders(self) -> list[Order]:
        """All order records under the order: prefix."""
        values = await self.store.get_by_prefix(KVKeys.ORDER)
        orders = [Order.from_record(value) for value in values]
        return [order for order in orders if order is not None]

    # ==================== RANK CACHE ====================

    async def get_cached_rank(self, partner_id: str) -> int | None:
        """Cached rank, or None on a miss. A cached 0 is a hit."""
        value = await self.store.get(KVKeys.rank_key(partner_id))
        return self._parse_rank(value)

    async def set_cached_rank(self, partner_id: str, rank: int) -> None:
        await self.store.set(KVKeys.rank_key(partner_id), rank)

    async def delete_cached_rank(self, partner_id: str) -> None:
        await self.store.delete(KVKeys.rank_key(partner_id))

    @staticmethod
    def _parse_rank(value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value >= 0 else None
        if isinstance(value, float) and value.is_integer() and value >= 0:
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return None

    # ==================== METRICS CACHE ====================

    async def get_cached_metrics(self, partner_id: str) -> UserMetrics | None:
        value = await self.store.get(KVKeys.metrics_key(partner_id))
        if value is None:
            return None
        return UserMetrics.from_record(value)

    async def set_cached_metrics(self, metrics: UserMetrics) -> None:
        await self.store.set(KVKeys.metrics_key(metrics.partner_id), metrics.to_record())

    async def delete_cached_metrics(self, partner_id: str) -> None:
        await self.store.delete(KVKeys.metrics_key(partner_id))

    # ==================== LISTING CACHES ====================

    async def delete_page_cache(self) -> int:
        """Delete every paginated listing and the full users list. Returns keys removed."""
        page_keys = await self.store.keys_by_prefix(KVKeys.USERS_PAGE)
        for key in page_keys:
            await self.store.delete(key)

        await self.store.delete(KVKeys.ALL_USERS_LIST)
        return len(page_keys) + 1
