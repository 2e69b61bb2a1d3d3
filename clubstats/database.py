"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from clubstats.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("sqlite"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def create_engine_for(url: str) -> AsyncEngine:
    """Build an async engine with per-dialect pool settings."""
    url = get_database_url(url)
    engine_kwargs = {
        "echo": False,
    }

    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases only exist on a single connection
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True  # Verify connection before checkout
        engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        engine_kwargs["max_overflow"] = 20
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        # Return connections to pool in clean state (prevents leaks)
        engine_kwargs["pool_reset_on_return"] = "rollback"
        # Kill queries that run longer than the budget (reconciliation batches included)
        engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.DATABASE_STATEMENT_TIMEOUT_MS)}
        }

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


DATABASE_URL = get_database_url(settings.DATABASE_URL)
is_sqlite = DATABASE_URL.startswith("sqlite")

async_engine = create_engine_for(DATABASE_URL)

AsyncSessionLocal = create_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a unit of work atomically on the given session.

    Commits when the block exits cleanly; on any exception every write made
    through the session since the last commit is rolled back and the error
    is re-raised.

    Example:
        async with AsyncSessionLocal() as session:
            async with transaction(session):
                session.add(review)
                await session.flush()
                await apply_child_mutation(session, club_id, ChildMutation.created())
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise


def dialect_name(session: AsyncSession) -> str:
    """Dialect of the engine the session is bound to ('postgresql', 'sqlite')."""
    return session.bind.dialect.name


async def insert_ignore_many(
    session: AsyncSession,
    model,
    rows: list[dict],
    conflict_fields: list[str],
) -> int:
    """
    Conflict-tolerant bulk insert: rows violating the unique key are skipped silently.

    Returns:
        Number of rows actually inserted
    """
    if not rows:
        return 0

    dialect = dialect_name(session)
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        raise ValueError(f"Unsupported dialect for insert_ignore_many: {dialect}")

    stmt = (
        dialect_insert(model.__table__)
        .values(rows)
        .on_conflict_do_nothing(index_elements=conflict_fields)
    )
    result = await session.execute(stmt)
    return max(result.rowcount or 0, 0)


async def init_db(engine: AsyncEngine = None) -> None:
    """Initialize database tables."""
    from clubstats import models  # noqa: F401  (registers tables on SQLModel.metadata)

    engine = engine or async_engine
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db(engine: AsyncEngine = None) -> None:
    """Close database connections."""
    engine = engine or async_engine
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed.")


def get_pool_status() -> dict:
    """Get current connection pool statistics for monitoring."""
    if is_sqlite:
        return {"type": "sqlite", "pooled": False}

    pool = async_engine.pool
    checked_out = pool.checkedout()
    total_capacity = pool.size() + pool.overflow()
    return {
        "type": "postgresql",
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": checked_out,
        "overflow": pool.overflow(),
        "utilization_pct": round(
            (checked_out / total_capacity) * 100, 1
        ) if total_capacity > 0 else 0,
    }
