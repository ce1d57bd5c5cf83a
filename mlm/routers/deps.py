"""
Shared Dependencies for Routers

Lazy-loaded service singletons to keep serverless cold starts cheap.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mlm.services.domains import MetricsService, RankService


# ==================== LAZY SINGLETONS ====================

_rank_service: Optional["RankService"] = None
_metrics_service: Optional["MetricsService"] = None


async def get_rank_service() -> "RankService":
    """Get or create RankService singleton (lazy loaded)"""
    global _rank_service
    if _rank_service is None:
        from mlm.config import EngineSettings
        from mlm.db import get_kv_store
        from mlm.services.domains import RankService
        from mlm.services.repositories import PartnerRepository

        repo = PartnerRepository(await get_kv_store())
        _rank_service = RankService(repo, EngineSettings.from_env())
    return _rank_service


async def get_metrics_service() -> "MetricsService":
    """Get or create MetricsService singleton (lazy loaded)"""
    global _metrics_service
    if _metrics_service is None:
        from mlm.services.domains import MetricsService

        rank_service = await get_rank_service()
        _metrics_service = MetricsService(rank_service.repo, rank_service, rank_service.settings)
    return _metrics_service


def reset_services() -> None:
    """Forget cached singletons (tests, configuration reloads)."""
    global _rank_service, _metrics_service
    _rank_service = None
    _metrics_service = None
