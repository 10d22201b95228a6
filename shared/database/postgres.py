"""
PostgreSQL Client
=================

Async relational store client using SQLAlchemy 2.0 with asyncpg.

The relational store is the only coordination point between pipeline
stages, so every stage opens its unit of work through `postgres_session()`.
A `sqlite+aiosqlite://` URL is accepted for local runs and tests.

Version: 0.1.0
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ORM models."""

    pass


def _engine_kwargs(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "pool_size": settings.postgres.pool_size,
        "max_overflow": settings.postgres.max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


class PostgresClient:
    """
    Async database client wrapper.

    Manages connection pooling and session lifecycle.
    """

    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def configure(cls, url: str, echo: bool = False) -> AsyncEngine:
        """
        Replace the engine with one bound to `url`.

        Args:
            url: Async SQLAlchemy URL
            echo: Echo SQL statements

        Returns:
            The new engine
        """
        cls._engine = create_async_engine(url, echo=echo, **_engine_kwargs(url))
        cls._session_factory = None
        logger.info("database_engine_configured", dialect=cls._engine.dialect.name)
        return cls._engine

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        """Get or create the async engine."""
        if cls._engine is None:
            url = settings.postgres.async_url
            cls._engine = create_async_engine(
                url,
                echo=settings.debug and not settings.is_testing,
                **_engine_kwargs(url),
            )
            logger.info(
                "postgres_engine_created",
                host=settings.postgres.host,
                database=settings.postgres.db,
                dialect=cls._engine.dialect.name,
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                cls.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def create_all(cls) -> None:
        """Create all tables registered on `Base`."""
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_created", tables=len(Base.metadata.tables))

    @classmethod
    async def drop_all(cls) -> None:
        """Drop all tables registered on `Base`."""
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @classmethod
    async def close(cls) -> None:
        """Close the engine and release all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("postgres_engine_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            async with cls.get_session_factory()() as session:
                result = await session.execute(text("SELECT 1"))
                _ = result.scalar()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "dialect": cls.get_engine().dialect.name,
            }
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }


async def get_postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a session, committing on success.

    Usage:
        @router.get("/rules")
        async def list_rules(db: AsyncSession = Depends(get_postgres_session)):
            result = await db.execute(select(RegulatoryRuleModel))
            return result.scalars().all()
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for a single unit of work.

    Commits when the block exits normally and rolls back on any exception,
    so a stage either applies all of its writes or none of them.

    Usage:
        async with postgres_session() as session:
            result = await session.execute(select(RegulatoryRuleModel))
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
