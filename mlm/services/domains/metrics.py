"""Metrics Domain Service.

Builds the per-partner snapshot shown on the dashboard (rank, team sizes,
sales) and caches it under user_metrics:{id} for settings.metrics_ttl.
Snapshots are recomputed lazily on read once stale, or for the whole
population by the scheduled sweep.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Callable

from mlm.config import EngineSettings
from mlm.errors import PartnerNotFoundError
from mlm.logging import get_logger, log_elapsed, sanitize_id_for_logging
from mlm.services.domains.rank import RankService
from mlm.services.models import Order, Partner, UserMetrics
from mlm.services.money import divide
from mlm.services.repositories import PartnerRepository

logger = get_logger(__name__)


@dataclass
class SalesSummary:
    """Sales aggregates for one partner."""

    personal_sales: Decimal = Decimal("0")
    order_count: int = 0
    average_order_value: Decimal = Decimal("0")


@dataclass
class RecalculationSummary:
    """Result of a full metrics sweep."""

    success: bool
    updated: int = 0
    errors: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def count_total_team(root: Partner, partners_by_id: dict[str, Partner]) -> int:
    """Number of team entries at every depth below root.

    Uses the same per-path cycle guard as rank calculation: a partner that
    is already an ancestor on the current path contributes nothing further.
    root itself is never looked up in partners_by_id.
    """
    total = 0
    stack = [(root, frozenset({root.id}))]

    while stack:
        partner, path = stack.pop()
        total += len(partner.team)

        for child_id in partner.team:
            if child_id in path:
                logger.warning(
                    "Cycle detected in team of %s at %s",
                    sanitize_id_for_logging(partner.id),
                    sanitize_id_for_logging(child_id),
                )
                continue
            child = partners_by_id.get(child_id)
            # Admin recruits count as one entry, their downline is not walked
            if child is not None and child.team and not child.is_admin:
                stack.append((child, path | {child_id}))

    return total


class MetricsService:
    """Per-partner metrics snapshots and the bulk recalculation sweep."""

    def __init__(
        self,
        repo: PartnerRepository,
        rank_service: RankService,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repo = repo
        self.rank_service = rank_service
        self.settings = settings or EngineSettings()
        self.clock = clock or (lambda: datetime.now(UTC))

    # ==================== AGGREGATES ====================

    def calculate_sales_metrics(
        self, partner_id: str, orders: list[Order], now: datetime
    ) -> SalesSummary:
        """Sales aggregates where partner_id is the buyer.

        personal_sales covers all orders, order_count only the trailing
        order window (30 x 24h by default). The average divides the former
        by the latter.
        """
        personal_orders = [o for o in orders if o.buyer_id == partner_id]
        personal_sales = sum((o.total for o in personal_orders), Decimal("0"))

        window_start = now - self.settings.order_window
        recent_orders = [
            o for o in personal_orders if o.created_at is not None and o.created_at >= window_start
        ]
        order_count = len(recent_orders)

        return SalesSummary(
            personal_sales=personal_sales,
            order_count=order_count,
            average_order_value=divide(personal_sales, order_count),
        )

    def calculate_total_team_size(self, partner: Partner, partners_by_id: dict[str, Partner]) -> int:
        # partner is the freshly loaded record; the index only resolves recruits
        return count_total_team(partner, partners_by_id)

    # ==================== SNAPSHOTS ====================

    async def calculate_and_cache_user_metrics(
        self,
        partner_id: str,
        all_partners: list[Partner] | None = None,
        all_orders: list[Order] | None = None,
        partner_index: dict[str, Partner] | None = None,
    ) -> UserMetrics:
        """Compute and store the metrics snapshot for one partner.

        Args:
            partner_id: Partner to compute
            all_partners: Preloaded partner list (bulk sweeps pass it once)
            all_orders: Preloaded order list
            partner_index: Preloaded id -> partner index; takes precedence
                over all_partners so a sweep builds it only once

        Returns:
            The stored snapshot (not stored for administrative accounts)

        Raises:
            PartnerNotFoundError: No record exists for partner_id
        """
        safe_id = sanitize_id_for_logging(partner_id)

        partner = await self.repo.get_partner(partner_id)
        if partner is None:
            logger.error("Partner %s not found", safe_id)
            raise PartnerNotFoundError(partner_id)

        now = self.clock()

        if partner.is_admin:
            logger.info("Partner %s is admin, skipping metrics", safe_id)
            return UserMetrics.zero(partner_id, now)

        rank = 0
        try:
            rank = await self.rank_service.get_user_rank(partner_id, use_cache=True)
        except Exception as e:
            logger.error("Error calculating rank for %s: %s", safe_id, e)

        direct_team_size = len(partner.team)
        total_team_size = 0
        try:
            if partner_index is None:
                if all_partners is None:
                    all_partners = await self.repo.list_partners()
                partner_index = {p.id: p for p in all_partners}
            total_team_size = self.calculate_total_team_size(partner, partner_index)
        except Exception as e:
            logger.error("Error calculating team size for %s: %s", safe_id, e)

        sales = SalesSummary()
        try:
            if all_orders is None:
                all_orders = await self.repo.list_orders()
            sales = self.calculate_sales_metrics(partner_id, all_orders, now)
        except Exception as e:
            logger.error("Error calculating sales for %s: %s", safe_id, e)

        metrics = UserMetrics(
            partner_id=partner_id,
            rank=rank,
            direct_team_size=direct_team_size,
            total_team_size=total_team_size,
            personal_sales=sales.personal_sales,
            team_sales=Decimal("0"),
            order_count=sales.order_count,
            average_order_value=sales.average_order_value,
            computed_at=now,
        )

        await self.repo.set_cached_metrics(metrics)
        logger.debug(
            "Metrics cached for %s: rank=%s direct=%s total=%s orders=%s",
            safe_id,
            rank,
            direct_team_size,
            total_team_size,
            sales.order_count,
        )
        return metrics

    async def get_user_metrics(self, partner_id: str) -> UserMetrics:
        """Cached snapshot if still fresh, otherwise a recomputed one."""
        try:
            cached = await self.repo.get_cached_metrics(partner_id)
        except Exception as e:
            logger.warning("Metrics cache read failed for %s: %s", sanitize_id_for_logging(partner_id), e)
            cached = None

        if cached is not None and cached.is_fresh(self.clock(), self.settings.metrics_ttl):
            return cached

        return await self.calculate_and_cache_user_metrics(partner_id)

    async def recalculate_all_metrics(self, deadline_seconds: float | None = None) -> RecalculationSummary:
        """Recompute snapshots for every non-admin partner.

        Partners are processed settings.batch_size at a time: concurrently
        within a batch, batches one after another. A failing partner is
        logged and counted without stopping the sweep.

        Args:
            deadline_seconds: Optional time budget, checked between batches.
                Partners not reached are reported as skipped.
        """
        started = time.monotonic()
        logger.info("Starting metrics recalculation for all partners")

        try:
            all_partners = await self.repo.list_partners()
            all_orders = await self.repo.list_orders()
        except Exception as e:
            logger.error("Metrics recalculation failed: %s", e, exc_info=True)
            return RecalculationSummary(success=False, updated=0, errors=1)

        partner_index = {p.id: p for p in all_partners}
        regular = [p for p in all_partners if not p.is_admin]
        total = len(regular)
        summary = RecalculationSummary(success=True)
        logger.info("Recalculating metrics for %s partners", total)

        async def process(partner: Partner) -> None:
            try:
                await self.calculate_and_cache_user_metrics(
                    partner.id, all_orders=all_orders, partner_index=partner_index
                )
            except Exception as e:
                logger.error(
                    "Error calculating metrics for %s: %s",
                    sanitize_id_for_logging(partner.id),
                    e,
                )
                summary.errors += 1
                return

            summary.updated += 1
            if summary.updated % self.settings.progress_log_every == 0:
                logger.info("Progress: %s/%s partners processed", summary.updated, total)

        batch_size = self.settings.batch_size
        with log_elapsed(logger, "Metrics batches"):
            for i in range(0, total, batch_size):
                if deadline_seconds is not None and time.monotonic() - started >= deadline_seconds:
                    summary.skipped = total - i
                    logger.warning(
                        "Metrics recalculation stopped by deadline, %s partners skipped",
                        summary.skipped,
                    )
                    break
                await asyncio.gather(*(process(p) for p in regular[i:i + batch_size]))

        try:
            await self.invalidate_page_cache()
        except Exception as e:
            logger.error("Failed to invalidate page cache after recalculation: %s", e)

        logger.info(
            "Metrics recalculation complete: updated=%s, errors=%s, skipped=%s",
            summary.updated,
            summary.errors,
            summary.skipped,
        )
        return summary

    # ==================== INVALIDATION ====================

    async def invalidate_user_metrics(self, partner_id: str) -> None:
        await self.repo.delete_cached_metrics(partner_id)
        logger.info("Invalidated metrics cache for %s", sanitize_id_for_logging(partner_id))

    async def invalidate_page_cache(self) -> None:
        removed = await self.repo.delete_page_cache()
        logger.info("Invalidated %s listing cache entries", removed)

    async def on_team_changed(self, partner_id: str) -> int:
        """Refresh derived data after a recruit was added to or removed from partner_id.

        For a relocation, call once for the old sponsor and once for the new one.

        Returns:
            Number of partners whose snapshot was dropped
        """
        await self.rank_service.invalidate_rank_cache(partner_id)
        await self.rank_service.update_upline_ranks(partner_id)

        chain = await self.rank_service.get_upline_ids(partner_id)
        for chain_id in chain:
            await self.invalidate_user_metrics(chain_id)

        await self.invalidate_page_cache()
        return len(chain)

    async def on_order_recorded(self, buyer_id: str) -> None:
        """Drop cached views that include the buyer's sales."""
        await self.invalidate_user_metrics(buyer_id)
        await self.invalidate_page_cache()
