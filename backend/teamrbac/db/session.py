from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from teamrbac.core.config import check_supported_dialect, settings


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    SQLite gets no pool: every session opens its own connection and writers
    queue on the file lock. PostgreSQL gets a pre-pinged, recycled pool.
    Any other dialect is rejected before an engine is created.
    """
    if check_supported_dialect(url) == "sqlite":
        return create_async_engine(url, echo=echo, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # detects dead connections before using them
        pool_recycle=300,    # recycle connections periodically (seconds)
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # store functions commit themselves and hand back loaded rows afterwards
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# sslmode/channel_binding are stripped for asyncpg
engine: AsyncEngine = build_engine(settings.DATABASE_URL_ASYNC_CLEAN, echo=settings.SQL_ECHO)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One AsyncSession per request, closed when the request is done."""
    async with AsyncSessionLocal() as session:
        yield session
