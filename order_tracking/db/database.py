"""
Order Tracking — Async SQLAlchemy engine and session factory
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from order_tracking.core.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


def build_engine(url: str, **overrides) -> AsyncEngine:
    """Create the engine; PostgreSQL gets pool sizing and a statement timeout."""
    options: dict = {"pool_pre_ping": True}
    if url.startswith("postgresql"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,
            connect_args={
                "server_settings": {"statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS)},
            },
        )
    options.update(overrides)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.database_url)
