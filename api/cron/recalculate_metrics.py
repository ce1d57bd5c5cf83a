"""
Recalculate Metrics Cron Job
Schedule: 0 * * * * (every hour, matching the snapshot lifetime)

Tasks:
1. Recompute the metrics snapshot of every non-admin partner
2. Drop the paginated partner listings so they pick up new ranks
"""
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from mlm.logging import get_logger
from mlm.routers.cron import verify_cron_secret

logger = get_logger(__name__)

# Stop starting new batches this long into the invocation
DEFAULT_DEADLINE_SECONDS = 50.0

# ASGI app (only export app to Vercel, avoid 'handler' symbol)
app = FastAPI()


@app.get("/api/cron/recalculate_metrics")
async def recalculate_metrics_entrypoint(request: Request):
    """
    Vercel Cron entrypoint.
    """
    try:
        verify_cron_secret(request.headers.get("Authorization"))
    except HTTPException as e:
        return JSONResponse({"error": e.detail}, status_code=401)

    from mlm.routers.deps import get_metrics_service

    started = datetime.now(timezone.utc)
    results = {"timestamp": started.isoformat()}

    try:
        metrics_service = await get_metrics_service()
        summary = await metrics_service.recalculate_all_metrics(
            deadline_seconds=DEFAULT_DEADLINE_SECONDS
        )
        results.update(summary.to_dict())
    except Exception as e:
        logger.error("Metrics cron failed: %s", e, exc_info=True)
        results["success"] = False
        results["error"] = str(e)

    return JSONResponse(results)
