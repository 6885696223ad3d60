"""
Order Tracking — Health endpoint
"""
import asyncio
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from order_tracking.core.config import get_settings
from order_tracking.core.redis_client import ping_redis

settings = get_settings()
router = APIRouter(tags=["health"])


async def _ping_database(session_factory) -> None:
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))


@router.get("/health")
async def health_check(request: Request):
    deps: dict[str, str] = {}
    healthy = True

    try:
        await asyncio.wait_for(
            _ping_database(request.app.state.session_factory), timeout=settings.HEALTH_CHECK_TIMEOUT
        )
        deps["database"] = "ok"
    except Exception as e:
        deps["database"] = f"error: {str(e)[:100]}"
        healthy = False

    if settings.REALTIME_RELAY_ENABLED:
        try:
            await ping_redis(settings.HEALTH_CHECK_TIMEOUT)
            deps["redis"] = "ok"
        except Exception as e:
            deps["redis"] = f"error: {str(e)[:100]}"
            healthy = False

    broadcaster = request.app.state.broadcaster
    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
            "realtime": {
                "connections": broadcaster.connection_count,
                "rooms": broadcaster.room_count,
                "relay": "redis" if broadcaster.relay is not None else "local",
            },
        },
        status_code=200 if healthy else 503,
    )
