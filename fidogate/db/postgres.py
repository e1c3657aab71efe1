from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
import structlog

from fidogate.core.config import settings

logger = structlog.get_logger()


def build_engine(url: str) -> AsyncEngine:
    # Connections are not shared across event loops (workers, tests)
    return create_async_engine(url, poolclass=NullPool, echo=False)


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_db():
    """Create tables that do not exist yet; migrations own schema changes."""
    # Register models on the metadata
    from fidogate.models import user, credential  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized", tables=sorted(Base.metadata.tables))
    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        raise


async def close_db():
    await engine.dispose()
    logger.info("Database connections closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; committed on success, rolled back on any failure."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # Also covers cancellation, so nothing half-written is committed
            await session.rollback()
            raise
