"""
Order Tracking — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncEngine

from order_tracking.api import health, realtime, tracking
from order_tracking.core.config import get_settings
from order_tracking.core.errors import TrackingError
from order_tracking.core.logging import configure_logging
from order_tracking.core.redis_client import close_redis, get_redis
from order_tracking.db.database import Base, build_session_factory, engine as default_engine
from order_tracking.middleware.auth import JWTAuthMiddleware
from order_tracking.models import order as _order_models, user as _user_models  # noqa: F401
from order_tracking.tracking.broadcaster import RoomBroadcaster
from order_tracking.tracking.orchestrator import TrackingOrchestrator
from order_tracking.tracking.relay import RedisEventRelay
from order_tracking.tracking.store import order_access_checker

settings = get_settings()
logger = logging.getLogger(__name__)


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def create_app(engine: AsyncEngine | None = None, create_tables: bool | None = None) -> FastAPI:
    engine = engine or default_engine
    session_factory = build_session_factory(engine)
    create_tables = settings.DB_CREATE_TABLES if create_tables is None else create_tables

    broadcaster = RoomBroadcaster(order_access_checker(session_factory))
    relay: RedisEventRelay | None = None
    if settings.REALTIME_RELAY_ENABLED:
        relay = RedisEventRelay(
            get_redis(),
            settings.REALTIME_RELAY_CHANNEL,
            broadcaster.deliver,
            retry_delay=settings.REALTIME_RELAY_RETRY_DELAY,
            max_retry_delay=settings.REALTIME_RELAY_MAX_RETRY_DELAY,
        )
        broadcaster.relay = relay

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: create tables (migrations are run separately in production)
        if create_tables:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        if relay is not None:
            relay.start()
        yield
        # Shutdown
        if relay is not None:
            await relay.stop()
            await close_redis()
        await engine.dispose()

    app = FastAPI(
        title="Order Tracking",
        description="Order status transitions, provider location and live WebSocket order rooms.",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
    )
    app.state.session_factory = session_factory
    app.state.broadcaster = broadcaster
    app.state.orchestrator = TrackingOrchestrator(session_factory, broadcaster)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(JWTAuthMiddleware)
    app.add_exception_handler(TrackingError, tracking_error_handler)

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    app.include_router(tracking.router)
    app.include_router(realtime.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()
