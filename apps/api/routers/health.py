"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "generation_worker": "enabled" if settings.GENERATION_WORKER_ENABLED else "disabled",
        "ai_provider": settings.AI_PROVIDER,
        "ai_provider_key": "configured" if settings.AI_PROVIDER_API_KEY else "missing",
    }

    # Check database connection
    try:
        from sqlalchemy import text

        runtime = getattr(request.app.state, "runtime", None)
        if runtime is not None:
            async with runtime.session_maker() as db:
                await db.execute(text("SELECT 1"))
        else:
            from database import engine

            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Check Redis connection (rate limiting)
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = []
    if not settings.AI_PROVIDER_API_KEY:
        missing.append("AI_PROVIDER_API_KEY")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
