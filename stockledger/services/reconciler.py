# stockledger/services/reconciler.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.models.batch import Batch
from stockledger.models.enums import ReservationStatus
from stockledger.models.item import Item
from stockledger.models.reservation import Reservation
from stockledger.obs.metrics import reconcile_drift_total
from stockledger.services.errors import NotFound
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import db_qty

log = logging.getLogger("stockledger.reconcile")


async def load_item(session: AsyncSession, item_id: int, *, for_update: bool = False) -> Item:
    """
    for_update=True takes the item row lock: every mutating operation on an
    item takes it first, so writers of one item are serialized (item -> batches).
    """
    stmt = select(Item).where(Item.id == int(item_id)).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    item = (await session.execute(stmt)).scalar_one_or_none()
    if item is None:
        raise NotFound(f"item {item_id} not found", context={"item_id": int(item_id)})
    return item


class QuantityReconciler:
    """
    Single owner of Item.quantity.

    quantity = Σ batches.quantity over every warehouse, expired or not. Safe to
    call as often as needed; it is the last step of every mutating operation
    and the recovery path for drift left behind by partial failures.
    """

    async def batch_total(self, session: AsyncSession, item_id: int) -> Decimal:
        total = (
            await session.execute(
                select(func.coalesce(func.sum(Batch.quantity), 0)).where(
                    Batch.item_id == int(item_id)
                )
            )
        ).scalar_one()
        return db_qty(total)

    async def _write(
        self, session: AsyncSession, item_id: int
    ) -> tuple[Decimal, Decimal]:
        """Returns (stored_before, total)."""

        async def attempt(_i: int) -> Optional[tuple[Decimal, Decimal]]:
            item = await load_item(session, item_id)
            before = db_qty(item.quantity)
            total = await self.batch_total(session, item_id)
            if before == total:
                return before, total
            res = await session.execute(
                update(Item)
                .where(Item.id == int(item_id), Item.version == int(item.version))
                .values(quantity=total, version=int(item.version) + 1)
                .execution_options(synchronize_session=False)
            )
            return (before, total) if res.rowcount == 1 else None

        return await cas_retry(attempt, resource="item", key=int(item_id))

    async def recalculate(self, session: AsyncSession, *, item_id: int) -> Decimal:
        _, total = await self._write(session, item_id)
        return total

    async def recalculate_all(self, session: AsyncSession) -> Dict[int, Decimal]:
        """
        Reconcile every item. Any stored value that disagrees with its batches at
        this point is drift (operations reconcile on their own), so it is counted
        and logged.
        """
        ids = (await session.execute(select(Item.id).order_by(Item.id))).scalars().all()
        out: Dict[int, Decimal] = {}
        for item_id in ids:
            before, total = await self._write(session, int(item_id))
            if before != total:
                reconcile_drift_total.inc()
                log.warning(
                    "quantity drift healed item=%s stored=%s batches=%s", item_id, before, total
                )
            out[int(item_id)] = total
        return out

    async def recalculate_booked(self, session: AsyncSession, *, item_id: int) -> Decimal:
        """Reset booked_quantity to Σ active reservations of the item."""

        async def attempt(_i: int) -> Optional[Decimal]:
            item = await load_item(session, item_id)
            total = db_qty(
                (
                    await session.execute(
                        select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                            Reservation.item_id == int(item_id),
                            Reservation.status == ReservationStatus.ACTIVE.value,
                        )
                    )
                ).scalar_one()
            )
            if db_qty(item.booked_quantity) == total:
                return total
            res = await session.execute(
                update(Item)
                .where(Item.id == int(item_id), Item.version == int(item.version))
                .values(booked_quantity=total, version=int(item.version) + 1)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return None
            log.warning(
                "booked_quantity reset item=%s stored=%s active=%s",
                item_id, item.booked_quantity, total,
            )
            return total

        return await cas_retry(attempt, resource="item", key=int(item_id))
