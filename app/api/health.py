from fastapi import APIRouter
from sqlalchemy import text

from app.config import get_settings
from app.database import engine
from app.utils.cache import redis_client

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/",
    summary="Health check",
    description="Basic health check endpoint."
)
def health_check():
    """Simple health check."""
    return {"status": "healthy"}


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the database and (when enabled) the Redis cache are reachable."
)
def readiness_check():
    """
    Readiness check for all dependencies.

    The cache is optional: with CACHE_ENABLED off it is reported as
    "disabled" and does not affect readiness.
    """
    checks = {"database": False}

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            checks["database"] = True
    except Exception as e:
        checks["database_error"] = str(e)

    if get_settings().CACHE_ENABLED:
        checks["redis"] = False
        try:
            redis_client.ping()
            checks["redis"] = True
        except Exception as e:
            checks["redis_error"] = str(e)
    else:
        checks["redis"] = "disabled"

    all_healthy = checks["database"] and checks["redis"] in (True, "disabled")

    return {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks
    }
