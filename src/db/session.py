"""Engine and unit-of-work helpers for the intake Postgres database."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config.settings import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine() -> AsyncEngine:
    """Lazily build the pooled asyncpg engine from settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    # Snapshots returned by the store are read after commit.
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Run one unit of work in a single database transaction.

    The transaction commits when the block exits normally and rolls back
    if it raises; the exception is re-raised after the rollback.

    Args:
        factory: Session factory; the module-level one when omitted.

    Yields:
        AsyncSession bound to the transaction.
    """
    async with (factory or _get_session_factory())() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()
