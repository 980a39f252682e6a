# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from stockledger.core.config import AppSettings, get_settings
from stockledger.db.base import Base, init_models
from stockledger.db.engine import create_async_engine_safe
from stockledger.db.session import get_session
from stockledger.main import app
from stockledger.services.utils import cas as cas_mod


# =========================================
# DSN: one SQLite file per test unless overridden
#   STOCKLEDGER_TEST_DATABASE_URL=postgresql+psycopg://postgres:pg@127.0.0.1:5432/stockledger_test
# =========================================
@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    return os.getenv("STOCKLEDGER_TEST_DATABASE_URL") or (
        f"sqlite+aiosqlite:///{tmp_path / 'stockledger-test.db'}"
    )


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fast_cas(monkeypatch):
    """Three compare-and-apply attempts, no backoff sleeps."""
    s = AppSettings(CAS_MAX_RETRIES=3, CAS_BACKOFF_BASE=0, CAS_BACKOFF_MAX=0)
    monkeypatch.setattr(cas_mod, "get_settings", lambda: s)
    return s


# =========================================
# Engine per test (NullPool, no cross-loop connections)
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    init_models()
    engine = create_async_engine_safe(database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Plain session; commits whatever is still open at the end of the test."""
    async with async_session_maker() as sess:
        try:
            yield sess
            if sess.in_transaction():
                await sess.commit()
        except Exception:
            if sess.in_transaction():
                await sess.rollback()
            raise


# =========================================
# FastAPI / httpx AsyncClient bound to the test database
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _session_override
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
