"""
API v1 Router

All query endpoints are prefixed with /analytics.
"""

from fastapi import APIRouter

from analytics import __version__

from . import analytics

router = APIRouter()

router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": __version__,
        "endpoints": [
            "/analytics/events",
            "/analytics/aggregate/type",
            "/analytics/aggregate/hour",
            "/analytics/jobs",
            "/analytics/jobs/{job_id}",
        ],
    }
