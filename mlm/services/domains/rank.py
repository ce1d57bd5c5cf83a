"""Rank Domain Service.

Rank is the maximum depth of a partner's downline: 0 without recruits,
otherwise 1 + the highest rank among direct recruits. Ranks are cached
under rank:user:{id} and invalidated up the sponsor chain whenever the
structure below a partner changes.

The recruitment graph is expected to be a forest, but nothing in the store
enforces it, so every walk here carries a cycle guard and rank failures
degrade to 0 instead of raising.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Iterable

from mlm.config import EngineSettings
from mlm.logging import get_logger, sanitize_id_for_logging
from mlm.services.models import Partner
from mlm.services.repositories import PartnerRepository

logger = get_logger(__name__)

# Listing filter ranges: lo < rank <= hi
RANK_FILTER_RANGES = {
    "10-20": (10, 20),
    "20-30": (20, 30),
    "30-40": (30, 40),
    "40-50": (40, 50),
    "50-60": (50, 60),
    "60-70": (60, 70),
    "70-80": (70, 80),
    "80-90": (80, 90),
    "90-100": (90, 100),
}
RANK_FILTER_OPEN_ENDED = "100+"
RANK_FILTER_EXACT_MAX = 10


def rank_matches_filter(rank: int, rank_filter: str | None) -> bool:
    """Check a rank against a listing filter value.

    "" matches everything, "0".."10" match exactly, "10-20" style ranges
    match lo < rank <= hi and "100+" matches rank > 100. Unknown filter
    values match everything.
    """
    if not rank_filter:
        return True

    value = rank_filter.strip()
    if value.isdigit() and int(value) <= RANK_FILTER_EXACT_MAX:
        return rank == int(value)

    if value in RANK_FILTER_RANGES:
        low, high = RANK_FILTER_RANGES[value]
        return low < rank <= high

    if value == RANK_FILTER_OPEN_ENDED:
        return rank > 100

    return True


@dataclass
class LinkIssue:
    """Disagreement between a team list and a sponsor pointer."""

    partner_id: str
    recruit_id: str
    kind: str  # missing_recruit | sponsor_mismatch | not_in_team


@dataclass
class _Frame:
    """One partner on the traversal stack."""

    partner_id: str
    path: frozenset[str]  # ancestors including this partner
    pending: list[str]  # recruits still to visit, popped from the end
    best: int = -1  # highest recruit depth seen, -1 while none counted


class RankService:
    """Rank calculation, caching and invalidation."""

    def __init__(self, repo: PartnerRepository, settings: EngineSettings | None = None) -> None:
        self.repo = repo
        self.settings = settings or EngineSettings()

    # ==================== CALCULATION ====================

    async def compute_depth(self, partner_id: str, visited: Iterable[str] | None = None) -> int:
        """Maximum downline depth of partner_id.

        Args:
            partner_id: Partner to measure
            visited: Partner IDs already on the current path

        Returns:
            0 for leaves, unknown partners and cycle re-entries, otherwise
            1 + the deepest recruit.

        Each recruit is measured with its own ancestor path only, so sibling
        branches never share visited sets. Runs on an explicit stack to stay
        clear of the interpreter recursion limit on long chains.
        """
        path = frozenset(visited or ())
        if partner_id in path:
            logger.warning("Cycle detected at partner %s", sanitize_id_for_logging(partner_id))
            return 0

        root = await self._open_frame(partner_id, path)
        if not isinstance(root, _Frame):
            return root

        stack = [root]
        while True:
            frame = stack[-1]

            if frame.pending:
                child_id = frame.pending.pop()

                if child_id in frame.path:
                    logger.warning(
                        "Cycle detected: %s is an ancestor of %s",
                        sanitize_id_for_logging(child_id),
                        sanitize_id_for_logging(frame.partner_id),
                    )
                    frame.best = max(frame.best, 0)
                    continue

                try:
                    child = await self._open_frame(child_id, frame.path)
                except Exception as e:
                    logger.error(
                        "Error calculating depth for partner %s: %s",
                        sanitize_id_for_logging(child_id),
                        e,
                    )
                    child = 0

                if isinstance(child, _Frame):
                    stack.append(child)
                else:
                    frame.best = max(frame.best, child)
                continue

            stack.pop()
            depth = frame.best + 1 if frame.best >= 0 else 0
            if not stack:
                return depth
            stack[-1].best = max(stack[-1].best, depth)

    async def _open_frame(self, partner_id: str, path: frozenset[str]) -> "_Frame | int":
        """Load a partner for traversal.

        Returns a frame when the partner has recruits, otherwise 0: leaves,
        unknown partners and administrative accounts, whose own downline is
        never walked.
        """
        partner = await self.repo.get_partner(partner_id)
        if partner is None:
            logger.warning("Partner %s not found, treating as leaf", sanitize_id_for_logging(partner_id))
            return 0
        if partner.is_admin or not partner.team:
            return 0
        return _Frame(
            partner_id=partner_id,
            path=path | {partner_id},
            pending=list(reversed(partner.team)),
        )

    async def calculate_user_rank(self, partner_id: str) -> int:
        """Calculate rank without touching the cache. Never raises."""
        started = time.perf_counter()
        try:
            rank = await self.compute_depth(partner_id)
        except Exception as e:
            logger.error(
                "Error calculating rank for partner %s: %s",
                sanitize_id_for_logging(partner_id),
                e,
                exc_info=True,
            )
            return 0

        logger.info(
            "Rank calculated for partner %s: %s (took %.0fms)",
            sanitize_id_for_logging(partner_id),
            rank,
            (time.perf_counter() - started) * 1000,
        )
        return rank

    # ==================== PERSISTENCE ====================

    async def update_user_rank(self, partner_id: str) -> int:
        """Recalculate rank, store it in the partner record and the rank cache.

        Returns:
            The new rank, or 0 if the partner record does not exist
        """
        try:
            rank = await self.calculate_user_rank(partner_id)

            if not await self.repo.save_partner_rank(partner_id, rank):
                logger.error(
                    "Partner %s not found, cannot update rank",
                    sanitize_id_for_logging(partner_id),
                )
                return 0

            await self.repo.set_cached_rank(partner_id, rank)
        except Exception as e:
            logger.error(
                "Error updating rank for partner %s: %s",
                sanitize_id_for_logging(partner_id),
                e,
                exc_info=True,
            )
            return 0

        logger.info("Partner %s rank updated: %s", sanitize_id_for_logging(partner_id), rank)
        return rank

    async def update_upline_ranks(self, partner_id: str) -> int:
        """Update rank for partner_id and every sponsor above it.

        Stops at the root, at a missing record, at a repeated partner, or
        after settings.max_upline_hops partners.

        Returns:
            Number of partners updated
        """
        max_hops = self.settings.max_upline_hops
        current: str | None = partner_id
        visited: set[str] = set()
        updated = 0

        try:
            while current and updated < max_hops:
                if current in visited:
                    logger.warning(
                        "Cycle in sponsor chain at partner %s",
                        sanitize_id_for_logging(current),
                    )
                    break
                visited.add(current)

                await self.update_user_rank(current)
                updated += 1

                partner = await self.repo.get_partner(current)
                if partner is None or not partner.sponsor_id:
                    current = None
                    break
                current = partner.sponsor_id

            if current and updated >= max_hops:
                logger.warning(
                    "Upline walk from %s stopped after %s hops",
                    sanitize_id_for_logging(partner_id),
                    max_hops,
                )
        except Exception as e:
            logger.error("Error updating upline ranks: %s", e, exc_info=True)

        logger.info(
            "Updated ranks for upline chain of %s (%s partners)",
            sanitize_id_for_logging(partner_id),
            updated,
        )
        return updated

    # ==================== CACHE ====================

    async def get_user_rank(self, partner_id: str, use_cache: bool = True) -> int:
        """Rank from cache, calculated and cached on a miss."""
        if use_cache:
            try:
                cached = await self.repo.get_cached_rank(partner_id)
            except Exception as e:
                logger.warning("Rank cache read failed for %s: %s", sanitize_id_for_logging(partner_id), e)
                cached = None
            if cached is not None:
                logger.debug("Using cached rank for %s: %s", sanitize_id_for_logging(partner_id), cached)
                return cached

        rank = await self.calculate_user_rank(partner_id)

        try:
            await self.repo.set_cached_rank(partner_id, rank)
        except Exception as e:
            logger.warning("Rank cache write failed for %s: %s", sanitize_id_for_logging(partner_id), e)

        return rank

    async def invalidate_rank_cache(self, partner_id: str) -> int:
        """Drop cached rank for partner_id and every ancestor.

        Returns:
            Number of cache entries deleted
        """
        deleted = 0
        try:
            await self.repo.delete_cached_rank(partner_id)
            deleted += 1

            partner = await self.repo.get_partner(partner_id)
            if partner is None:
                return deleted

            visited = {partner_id}
            current = partner.sponsor_id
            while current and current not in visited:
                visited.add(current)
                await self.repo.delete_cached_rank(current)
                deleted += 1

                sponsor = await self.repo.get_partner(current)
                if sponsor is None:
                    break
                current = sponsor.sponsor_id

            if current and current in visited:
                logger.warning("Cycle in sponsor chain at partner %s", sanitize_id_for_logging(current))
        except Exception as e:
            logger.error(
                "Error invalidating rank cache for partner %s: %s",
                sanitize_id_for_logging(partner_id),
                e,
            )

        logger.info(
            "Invalidated rank cache for %s partners starting at %s",
            deleted,
            sanitize_id_for_logging(partner_id),
        )
        return deleted

    async def get_upline_ids(self, partner_id: str) -> list[str]:
        """partner_id followed by its sponsors up to the root.

        Capped at settings.max_upline_hops ids, the same partners
        update_upline_ranks visits.
        """
        chain = [partner_id]
        visited = {partner_id}
        current = partner_id

        while len(chain) < self.settings.max_upline_hops:
            partner = await self.repo.get_partner(current)
            if partner is None or not partner.sponsor_id or partner.sponsor_id in visited:
                break
            current = partner.sponsor_id
            visited.add(current)
            chain.append(current)

        return chain

    # ==================== LISTINGS & AUDIT ====================

    async def filter_partners_by_rank(
        self, partners: list[Partner], rank_filter: str | None
    ) -> list[Partner]:
        """Keep partners whose cached rank matches rank_filter.

        Administrative accounts never pass a non-empty filter.
        """
        if not rank_filter:
            return list(partners)

        candidates = [p for p in partners if not p.is_admin]
        ranks: list[int] = []
        batch_size = self.settings.batch_size

        for i in range(0, len(candidates), batch_size):
            batch = candidates[i:i + batch_size]
            ranks.extend(await asyncio.gather(*(self._rank_or_zero(p.id) for p in batch)))

        result = [p for p, rank in zip(candidates, ranks) if rank_matches_filter(rank, rank_filter)]
        logger.info("Filtered %s partners to %s by rank %s", len(partners), len(result), rank_filter)
        return result

    async def _rank_or_zero(self, partner_id: str) -> int:
        try:
            return await self.get_user_rank(partner_id)
        except Exception as e:
            logger.error("Error loading rank for %s: %s", sanitize_id_for_logging(partner_id), e)
            return 0

    async def find_inconsistent_links(self, partners: list[Partner] | None = None) -> list[LinkIssue]:
        """Report places where team lists and sponsor pointers disagree.

        Read-only: nothing is repaired.
        """
        if partners is None:
            partners = await self.repo.list_partners()

        by_id = {p.id: p for p in partners if not p.is_admin}
        admin_ids = {p.id for p in partners if p.is_admin}
        issues: list[LinkIssue] = []

        for partner in by_id.values():
            for recruit_id in partner.team:
                if recruit_id in admin_ids:
                    continue
                recruit = by_id.get(recruit_id)
                if recruit is None:
                    issues.append(LinkIssue(partner.id, recruit_id, "missing_recruit"))
                elif recruit.sponsor_id != partner.id:
                    issues.append(LinkIssue(partner.id, recruit_id, "sponsor_mismatch"))

            sponsor = by_id.get(partner.sponsor_id) if partner.sponsor_id else None
            if sponsor is not None and partner.id not in sponsor.team:
                issues.append(LinkIssue(sponsor.id, partner.id, "not_in_team"))

        if issues:
            logger.warning("Found %s inconsistent team/sponsor links", len(issues))
        return issues
