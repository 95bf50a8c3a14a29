"""Database engine, session factory and storage helpers."""

from typing import Any, AsyncGenerator, Dict, List, Optional

import structlog
from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from starpath.core.config import settings

logger = structlog.get_logger()

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    global _engine, _session_factory

    if _engine is None:
        engine_kwargs: Dict[str, Any] = {"echo": settings.DATABASE_ECHO}
        if settings.is_postgres():
            engine_kwargs.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(settings.DATABASE_URL, **engine_kwargs)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)

    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get the session factory bound to the engine."""
    get_engine()
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create tables for all registered models."""
    # Register models on the metadata
    import starpath.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def insert_if_absent(
    db: AsyncSession,
    model,
    values: Dict[str, Any],
    conflict_columns: List[str]
) -> bool:
    """Insert a row unless one with the same unique key exists.

    Returns True when this call inserted the row. The storage layer resolves
    the race between concurrent callers, so exactly one of them sees True.
    """
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    elif dialect == "sqlite":
        stmt = insert(model).values(**values).prefix_with("OR IGNORE")
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")

    result = await db.execute(stmt)
    return bool(result.rowcount)
