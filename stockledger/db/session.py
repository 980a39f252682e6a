# stockledger/db/session.py
# Async engine + session factory + FastAPI dependency
from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from stockledger.core.config import get_settings
from stockledger.db.engine import create_async_engine_safe

_engine: AsyncEngine | None = None
_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        s = get_settings()
        _engine = create_async_engine_safe(s.DATABASE_URL, echo=s.SQL_ECHO)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _maker
    if _maker is None:
        _maker = async_sessionmaker(bind=get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_maker()() as session:
        yield session


async def create_all() -> None:
    """Create tables directly (dev / tests); production goes through Alembic."""
    from stockledger.db.base import Base, init_models

    init_models()
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engines() -> None:
    global _engine, _maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _maker = None
