# stockledger/services/ledger_writer.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.models.enums import LedgerType
from stockledger.models.stock_ledger import LedgerEntry
from stockledger.services.reconciler import load_item
from stockledger.services.utils.quantities import as_utc, db_qty, to_qty, utcnow

_TICK = timedelta(microseconds=1)


class LedgerQuery:
    """
    Lazy, finite, restartable view over one item's ledger, newest first.

    Every ``async for`` re-runs the query from the top, streaming keyset pages
    ordered by (occurred_at DESC, id DESC).
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        types: Optional[Sequence[LedgerType | str]] = None,
        batch_id: Optional[int] = None,
        page_size: int = 200,
    ) -> None:
        self._session = session
        self.item_id = int(item_id)
        self.types = [LedgerType(t).value for t in types] if types else None
        self.batch_id = batch_id
        self.page_size = max(1, int(page_size))

    def _base(self):
        stmt = select(LedgerEntry).where(LedgerEntry.item_id == self.item_id)
        if self.types:
            stmt = stmt.where(LedgerEntry.type.in_(self.types))
        if self.batch_id is not None:
            stmt = stmt.where(LedgerEntry.batch_id == int(self.batch_id))
        return stmt

    async def __aiter__(self) -> AsyncIterator[LedgerEntry]:
        cursor: Optional[tuple[datetime, int]] = None
        while True:
            stmt = self._base()
            if cursor is not None:
                ts, last_id = cursor
                stmt = stmt.where(
                    or_(
                        LedgerEntry.occurred_at < ts,
                        and_(LedgerEntry.occurred_at == ts, LedgerEntry.id < last_id),
                    )
                )
            stmt = stmt.order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc()).limit(
                self.page_size
            )
            page = list((await self._session.execute(stmt)).scalars().all())
            for row in page:
                yield row
            if len(page) < self.page_size:
                return
            cursor = (page[-1].occurred_at, int(page[-1].id))

    async def all(self, *, limit: Optional[int] = None) -> List[LedgerEntry]:
        out: List[LedgerEntry] = []
        async for row in self:
            out.append(row)
            if limit is not None and len(out) >= limit:
                break
        return out


class LedgerRecorder:
    """
    Append-only writer for stock_ledger.

    append() runs inside the caller's atomic unit: if it fails, the mutation it
    documents is rolled back with it. occurred_at is forced to be strictly
    increasing per item, stamped under the item row lock, so that replay order
    matches commit order.
    """

    async def _next_timestamp(
        self, session: AsyncSession, item_id: int, candidate: datetime
    ) -> datetime:
        # item row lock first: stamping order then follows commit order per item
        await load_item(session, item_id, for_update=True)
        last = (
            await session.execute(
                select(LedgerEntry.occurred_at)
                .where(LedgerEntry.item_id == int(item_id))
                .order_by(LedgerEntry.occurred_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        candidate = as_utc(candidate)
        last = as_utc(last)
        if last is not None and candidate <= last:
            return last + _TICK
        return candidate

    async def append(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        type: LedgerType | str,
        quantity: Any,
        batch_id: Optional[int] = None,
        previous_quantity: Any = None,
        warehouse_id: Optional[int] = None,
        target_warehouse_id: Optional[int] = None,
        reference: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> int:
        ts = await self._next_timestamp(session, item_id, occurred_at or utcnow())
        entry = LedgerEntry(
            item_id=int(item_id),
            batch_id=batch_id,
            warehouse_id=warehouse_id,
            target_warehouse_id=target_warehouse_id,
            type=LedgerType(type).value,
            quantity=to_qty(quantity),
            previous_quantity=None if previous_quantity is None else to_qty(previous_quantity),
            reference=reference,
            details=details or None,
            actor_id=actor_id,
            occurred_at=ts,
        )
        session.add(entry)
        await session.flush()
        return int(entry.id)

    def query_by_item(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        types: Optional[Sequence[LedgerType | str]] = None,
        batch_id: Optional[int] = None,
        page_size: int = 200,
    ) -> LedgerQuery:
        return LedgerQuery(session, item_id=item_id, types=types, batch_id=batch_id, page_size=page_size)

    async def statistics(
        self,
        session: AsyncSession,
        *,
        item_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """{type: {"count": n, "quantity": Σ}} over the selected window."""
        stmt = select(
            LedgerEntry.type,
            func.count(LedgerEntry.id),
            func.coalesce(func.sum(LedgerEntry.quantity), 0),
        )
        if item_id is not None:
            stmt = stmt.where(LedgerEntry.item_id == int(item_id))
        if since is not None:
            stmt = stmt.where(LedgerEntry.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(LedgerEntry.occurred_at <= until)
        stmt = stmt.group_by(LedgerEntry.type).order_by(LedgerEntry.type)

        out: Dict[str, Dict[str, Any]] = {}
        for typ, cnt, total in (await session.execute(stmt)).all():
            out[str(typ)] = {"count": int(cnt), "quantity": db_qty(total)}
        return out
