"""Database configuration and session management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from forecast_match.config import settings
from forecast_match.logger import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def build_engine(database_url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = database_url or settings.database_url
    kwargs: dict = {"echo": settings.debug if echo is None else echo}
    if not make_url(url).get_backend_name().startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,  # Max persistent connections
            max_overflow=settings.db_max_overflow,  # Additional transient connections under load
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return create_async_engine(url, **kwargs)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session maker, creating the engine on first use."""
    global _engine, _session_maker
    if _session_maker is None:
        _engine = build_engine()
        _session_maker = build_session_maker(_engine)
    return _session_maker


@asynccontextmanager
async def session_scope(
    maker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session wrapped in a single transaction.

    Commits when the block exits normally. Any exception, including
    ``asyncio.CancelledError``, rolls the whole unit back so no partial
    writes survive.
    """
    maker = maker or get_session_maker()
    async with maker() as session:
        async with session.begin():
            yield session


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables for local development and tests."""
    # Register every mapped class on Base.metadata before create_all
    import forecast_match.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created", tables=sorted(Base.metadata.tables))


async def dispose_engine() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
