import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sitetrack.db.redis import get_redis

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness check. Returns 503 once shutdown has started."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "sitetrack-backend"},
        )
    return {"status": "healthy", "service": "sitetrack-backend"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the document store is reachable."""
    checks = {"redis": False}

    try:
        await get_redis().ping()
        checks["redis"] = True
    except Exception as e:
        logger.error("redis_health_check_failed", error=str(e), error_type=type(e).__name__)

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
