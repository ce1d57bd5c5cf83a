"""
Partner Metrics - Main FastAPI Application

Single entry point for scheduled metrics jobs.
"""
from fastapi import FastAPI

from mlm.logging import get_logger
from mlm.routers import cron_router

logger = get_logger(__name__)

app = FastAPI(title="Partner Metrics", docs_url=None, redoc_url=None)

app.include_router(cron_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "partner-metrics"}
