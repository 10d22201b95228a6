"""
Database Module
===============

Async relational store client (SQLAlchemy 2.0 + asyncpg).

Usage:
    from shared.database import get_postgres_session, postgres_session

    # In FastAPI
    @router.get("/rules")
    async def list_rules(
        db: AsyncSession = Depends(get_postgres_session),
    ):
        result = await db.execute(select(RegulatoryRuleModel))
        ...

    # In workers
    async with postgres_session() as session:
        ...
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    get_postgres_session,
    postgres_session,
)


__all__ = [
    "Base",
    "PostgresClient",
    "get_postgres_session",
    "postgres_session",
]
