"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations (aiosqlite
works as well, which is what the test-suite uses).

The engine and session maker are created once in the application lifespan
and stored on ``app.state``; nothing here keeps module-level connection
state, so every component receives its session maker explicitly.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from helpdesk_kb.config import settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    All models inherit from this class.
    """
    pass


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the database engine.

    Should be called during application startup.

    Args:
        database_url: Override for ``settings.database_url``

    Returns:
        AsyncEngine: The initialized engine
    """
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)

    # asyncpg expects ssl= instead of libpq's sslmode=
    url = url.replace("sslmode=", "ssl=")

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading after commit
        autoflush=False,
    )


async def close_database(engine: Optional[AsyncEngine]) -> None:
    """
    Dispose of the engine's connections.

    Should be called during application shutdown.
    """
    if engine is not None:
        await engine.dispose()


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Async generator for database sessions.

    For use with FastAPI's Depends() - FastAPI handles the lifecycle.
    The session maker is read from ``app.state.session_maker``.

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    session_maker = getattr(request.app.state, "session_maker", None)
    if session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    For use in background tasks and scheduled jobs. Commits on success,
    rolls back on error.

    Usage:
        async with get_session_context(session_maker) as session:
            await session.execute(update(ArticleModel).values(...))

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """
    Create all database tables.

    This should only be used for development/testing.
    Production should use migrations.
    """
    # Register models on the metadata before create_all
    from helpdesk_kb.knowledge_base.infrastructure import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
