"""
Database Infrastructure
=======================

Engine and unit-of-work sessions for the triage stores.

SQLAlchemy 2.0 async on asyncpg. The API process and the standalone worker
each own one engine, created at startup and disposed at shutdown.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from helpdesk_triage.config import settings
from helpdesk_triage.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base of the triage ORM models."""


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Raises:
        RuntimeError: If ``init_database`` was not called
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def init_database(database_url: str | None = None) -> AsyncEngine:
    """
    Create the process engine and session maker.

    Args:
        database_url: Overrides ``settings.database_url``

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _session_maker

    # asyncpg expects ssl= rather than libpq's sslmode=
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")

    _engine = create_async_engine(
        url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        connect_args={"server_settings": {"application_name": settings.app_name}},
    )
    # Loaded rows stay usable after commit; audit reads happen post-commit
    _session_maker = async_sessionmaker(bind=_engine, expire_on_commit=False, autoflush=False)

    logger.info(
        "Database engine created",
        extra={"pool_size": settings.db_pool_size, "max_overflow": settings.db_max_overflow}
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections. Safe to call when never initialized."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    One session is one unit of work: committed when the block exits cleanly,
    rolled back when it raises.

    Usage:
        async with get_session_context() as session:
            ticket = await SQLAlchemyTicketRepository(session).get(ticket_id)
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_database() -> bool:
    """True when a connection can be checked out and queried."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database ping failed", extra={"error": str(e)})
        return False


async def create_tables() -> None:
    """
    Create the triage tables if missing.

    Development convenience; production schemas are managed by migrations.
    """
    # Registers the triage tables on Base.metadata
    from helpdesk_triage.triage.infrastructure import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
