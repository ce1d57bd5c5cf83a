"""
Cron job endpoints for scheduled metrics maintenance.

Called by Vercel Cron with CRON_SECRET authentication.
"""
import os

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from mlm.errors import ERROR_UNAUTHORIZED
from mlm.logging import get_logger
from mlm.routers.deps import get_metrics_service, get_rank_service
from mlm.services.domains import MetricsService, RankService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """Verify cron job authentication."""
    cron_secret = os.environ.get("CRON_SECRET", "")
    if not cron_secret or authorization != f"Bearer {cron_secret}":
        raise HTTPException(status_code=401, detail=ERROR_UNAUTHORIZED)


@router.get("/recalculate-metrics")
@router.post("/recalculate-metrics")
async def cron_recalculate_metrics(
    _auth: None = Depends(verify_cron_secret),
    deadline_seconds: float | None = Query(None, gt=0),
    metrics_service: MetricsService = Depends(get_metrics_service),
):
    """
    Recalculate metrics snapshots for every partner.
    Called by Vercel Cron hourly, matching the snapshot lifetime.
    """
    summary = await metrics_service.recalculate_all_metrics(deadline_seconds=deadline_seconds)
    return summary.to_dict()


@router.get("/audit-structure")
async def cron_audit_structure(
    _auth: None = Depends(verify_cron_secret),
    rank_service: RankService = Depends(get_rank_service),
):
    """
    Report team/sponsor links that disagree.
    Called by Vercel Cron daily.
    """
    issues = await rank_service.find_inconsistent_links()
    for issue in issues[:50]:
        logger.warning(
            "Structure issue: %s partner=%s recruit=%s",
            issue.kind,
            issue.partner_id,
            issue.recruit_id,
        )

    return {
        "issues": len(issues),
        "items": [
            {"partner_id": i.partner_id, "recruit_id": i.recruit_id, "kind": i.kind}
            for i in issues
        ],
    }
