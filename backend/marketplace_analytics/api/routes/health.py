import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from marketplace_analytics.config import settings
from marketplace_analytics.core.observability import uptime_seconds, utc_now_iso
from marketplace_analytics.database import ping_database

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger("marketplace")


@router.get("", summary="Healthcheck")
def healthcheck():
    """Liveness. Keep payload stable for monitoring systems."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": settings.build_version,
    }


@router.get("/ready", summary="Readiness")
def readiness():
    try:
        ping_database()
    except SQLAlchemyError as exc:
        logger.warning("readiness_check_failed", extra={"error": str(exc)})
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "error", "time": utc_now_iso()},
        )
    return {"status": "ok", "database": "ok", "time": utc_now_iso()}
