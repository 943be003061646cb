"""Database connection and session management for the attempt ledger."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from swapexec.config import get_settings
from swapexec.ledger.models import Base

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _normalize_url(db_url: str) -> str:
    # Convert sqlite:/// to sqlite+aiosqlite:/// if needed
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return db_url


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        url = db_url or get_settings().attempt_ledger_url
        if not url:
            raise RuntimeError("Attempt ledger is disabled (ATTEMPT_LEDGER_URL not set)")
        _engine = create_async_engine(_normalize_url(url), echo=False, future=True)
    return _engine


def get_session_factory(db_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(db_url),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db(db_url: Optional[str] = None) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session context manager that commits on success."""
    session_factory = get_session_factory(db_url)
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def _create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(db_url: Optional[str] = None) -> None:
    """Initialize the database by creating all tables."""
    engine = get_engine(db_url)
    try:
        await _create_tables(engine)
    except OperationalError:
        # Another invocation created the tables between the check and the CREATE
        logger.warning("Attempt ledger tables were created concurrently, retrying")
        await _create_tables(engine)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
