# stockledger/db/engine.py
# Engine factory: per-backend connect_args; SQLite gets explicit BEGIN so SAVEPOINT works
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

__all__ = ["create_async_engine_safe", "normalize_async_dsn"]


def normalize_async_dsn(url: str) -> str:
    """sqlite:/// -> sqlite+aiosqlite:///, postgres(ql):// -> postgresql+psycopg://"""
    url = url.strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + url[len("sqlite:///") :]
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _connect_args_for(url_str: str) -> dict[str, Any]:
    """
    Backend specific connect_args:
    - PostgreSQL(psycopg): application_name
    - SQLite: check_same_thread only
    """
    backend = make_url(url_str).get_backend_name()
    if backend.startswith("postgresql"):
        return {"application_name": "stockledger"}
    if backend.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    # pysqlite/aiosqlite defer BEGIN on their own, which breaks SAVEPOINT;
    # take over transaction start and turn on FK enforcement.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_async_engine_safe(url_str: str, *, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    """Async engine for 'postgresql+psycopg' or 'sqlite+aiosqlite'."""
    url_str = normalize_async_dsn(url_str)
    u = make_url(url_str)

    opts: dict[str, Any] = {"echo": echo, **kwargs}
    if u.get_backend_name().startswith("postgresql"):
        opts.setdefault("pool_pre_ping", True)
    connect_args = _connect_args_for(url_str)
    if connect_args:
        opts["connect_args"] = connect_args

    engine = create_async_engine(url_str, **opts)
    if u.get_backend_name().startswith("sqlite"):
        _install_sqlite_hooks(engine)
    return engine
