"""Database engine and session management."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)

from rollcall.core.config import settings
from rollcall.core.logging import get_logger
from rollcall.infrastructure.database.models import Base

logger = get_logger(__name__)


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine. Pool settings apply to server databases only."""
    url = url or settings.database_url
    kwargs = {"echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.POSTGRES_POOL_SIZE,
            max_overflow=settings.POSTGRES_MAX_OVERFLOW,
            pool_timeout=settings.POSTGRES_POOL_TIMEOUT
        )
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session: committed on success, rolled back on error.

    Example:
        ```python
        async with session_scope(factory) as session:
            session.add(record)
        ```
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.debug("Rolling back database session", error=str(e))
        await session.rollback()
        raise
    finally:
        await session.close()
