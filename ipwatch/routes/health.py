from fastapi import APIRouter
from datetime import datetime, timezone

from ipwatch.core.config import settings
from ipwatch.services.monitoring_scheduler import monitoring_scheduler

router = APIRouter()
_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def get_health():
    """
    Standard health check endpoint.
    """
    return {"status": "ok", "service": "ipwatch-monitoring"}


@router.get("/api/v1/health")
def get_health_v1():
    """
    Health check with uptime and monitoring scheduler state.
    """
    now = datetime.now(timezone.utc)
    uptime_seconds = int((now - _STARTED_AT).total_seconds())
    return {
        "status": "ok",
        "service": "ipwatch-monitoring",
        "environment": settings.APP_ENV,
        "server_time": now.isoformat(),
        "uptime_seconds": uptime_seconds,
        "scheduler": monitoring_scheduler.status()
    }
