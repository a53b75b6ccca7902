"""Async SQLAlchemy engine and session management."""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings

logger = structlog.get_logger()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; rolled back if the handler raises."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the risk tables if missing.

    Marketplace tables (users, orders, products...) are owned by the
    marketplace schema and only read here, so only risk tables are created.
    """
    from src.db.models import RISK_TABLES, Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=RISK_TABLES)
    logger.info("database_initialized", tables=[t.name for t in RISK_TABLES])


async def check_db() -> bool:
    """Check database connectivity."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("database_check_failed", exc_info=True)
        return False
