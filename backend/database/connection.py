from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
import logging

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def normalize_database_url(database_url: str) -> str:
    """Select the async driver for plain postgres/sqlite URLs."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def create_engine_from_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases"""
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    url = normalize_database_url(database_url)

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency to get a request-scoped database session"""
    session_factory = request.app.state.services.session_factory
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine) -> bool:
    """Verify the connection and create missing tables"""
    # Models register themselves on Base.metadata when imported
    from database import bank_models, identity_models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Database ready, tables: {sorted(Base.metadata.tables)}")
            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def ping_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        result = await conn.execute(text("SELECT 1"))
        result.fetchone()
