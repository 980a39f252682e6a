# stockledger/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[None]:
    """
    Atomic unit for one inventory operation.

    - caller already holds a transaction -> SAVEPOINT; on error only this
      operation's writes are rolled back and the outer transaction survives
    - no transaction yet -> begin/commit here
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield
    else:
        async with session.begin():
            yield
