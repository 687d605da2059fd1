"""
Idea Forge - Database Connection
================================

Async SQLAlchemy setup with connection pooling.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ideaforge.core.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# ==========================================================================
# Engine Setup
# ==========================================================================

def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create async database engine with connection pooling."""
    url = database_url or str(settings.DATABASE_URL)

    # SQLite doesn't support pool_size/max_overflow
    if "sqlite" in url:
        return create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )

    engine = create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,  # Verify connections before use
    )

    if url.startswith("postgresql+asyncpg"):
        from pgvector.asyncpg import register_vector

        @event.listens_for(engine.sync_engine, "connect")
        def _register_vector(dbapi_connection, connection_record):
            dbapi_connection.run_async(register_vector)

    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by request handlers and background generation."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = create_engine()


# ==========================================================================
# Session Factory
# ==========================================================================

AsyncSessionLocal = create_session_factory(engine)


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database (create tables if not exist)."""
    target = bind or engine
    async with target.begin() as conn:
        # Import all models to register them
        from ideaforge.core import models  # noqa: F401

        if target.dialect.name == "postgresql":
            await conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS vector")
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
