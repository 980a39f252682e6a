# stockledger/services/batch_store.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.models.batch import Batch
from stockledger.models.enums import ReservationStatus
from stockledger.models.item import Item
from stockledger.models.reservation import Reservation
from stockledger.models.warehouse import Warehouse
from stockledger.services.errors import (
    BatchInUse,
    ConcurrentModification,
    InvalidQuantity,
    MissingWarehouse,
    NotFound,
)
from stockledger.services.lot_numbers import LotNumberGenerator
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import ZERO, db_qty, to_qty, today, utcnow

log = logging.getLogger("stockledger.batches")


class BatchStore:
    """
    CRUD over batch rows. No business rules beyond the row's own invariants:

    - quantity never goes below zero
    - quantity / initial_quantity only change through signed deltas applied with
      a version check (compare-and-apply), never through a blind overwrite
    - a batch referenced by an active reservation cannot be deleted
    """

    def __init__(self, lots: Optional[LotNumberGenerator] = None) -> None:
        self.lots = lots or LotNumberGenerator()

    # ---------------------------------------------------------------
    # reads
    # ---------------------------------------------------------------
    async def get_batch(self, session: AsyncSession, batch_id: int, *, for_update: bool = False) -> Batch:
        stmt = select(Batch).where(Batch.id == int(batch_id)).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        batch = (await session.execute(stmt)).scalar_one_or_none()
        if batch is None:
            raise NotFound(f"batch {batch_id} not found", context={"batch_id": int(batch_id)})
        return batch

    async def get_batches_for_item(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        warehouse_id: Optional[int] = None,
        only_available: bool = False,
        for_update: bool = False,
    ) -> List[Batch]:
        stmt = select(Batch).where(Batch.item_id == int(item_id))
        if warehouse_id is not None:
            stmt = stmt.where(Batch.warehouse_id == int(warehouse_id))
        if only_available:
            stmt = stmt.where(Batch.quantity > 0)
        stmt = stmt.order_by(Batch.id.asc()).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        return list((await session.execute(stmt)).scalars().all())

    async def find_batches_by_lot(
        self,
        session: AsyncSession,
        *,
        lot_number: str,
        item_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
    ) -> List[Batch]:
        stmt = select(Batch).where(Batch.lot_number == lot_number.strip())
        if item_id is not None:
            stmt = stmt.where(Batch.item_id == int(item_id))
        if warehouse_id is not None:
            stmt = stmt.where(Batch.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(Batch.id.asc()).execution_options(populate_existing=True)
        return list((await session.execute(stmt)).scalars().all())

    async def get_expiring_batches(
        self,
        session: AsyncSession,
        *,
        days: int = 30,
        warehouse_id: Optional[int] = None,
        on: Optional[date] = None,
    ) -> List[Batch]:
        """In-stock batches expiring within [on, on + days]. Undated batches never expire."""
        start = on or today()
        end = start + timedelta(days=int(days))
        stmt = select(Batch).where(
            Batch.quantity > 0,
            Batch.expiry_date.is_not(None),
            Batch.expiry_date >= start,
            Batch.expiry_date <= end,
        )
        if warehouse_id is not None:
            stmt = stmt.where(Batch.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(Batch.expiry_date.asc(), Batch.id.asc())
        return list((await session.execute(stmt)).scalars().all())

    async def get_expired_batches(
        self,
        session: AsyncSession,
        *,
        warehouse_id: Optional[int] = None,
        on: Optional[date] = None,
    ) -> List[Batch]:
        stmt = select(Batch).where(
            Batch.quantity > 0,
            Batch.expiry_date.is_not(None),
            Batch.expiry_date < (on or today()),
        )
        if warehouse_id is not None:
            stmt = stmt.where(Batch.warehouse_id == int(warehouse_id))
        stmt = stmt.order_by(Batch.expiry_date.asc(), Batch.id.asc())
        return list((await session.execute(stmt)).scalars().all())

    async def active_reserved_quantity(self, session: AsyncSession, batch_id: int) -> Decimal:
        total = (
            await session.execute(
                select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                    Reservation.batch_id == int(batch_id),
                    Reservation.status == ReservationStatus.ACTIVE.value,
                )
            )
        ).scalar_one()
        return db_qty(total)

    # ---------------------------------------------------------------
    # writes
    # ---------------------------------------------------------------
    async def create_batch(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        warehouse_id: Optional[int],
        quantity: Any,
        initial_quantity: Any = None,
        lot_number: Optional[str] = None,
        batch_number: Optional[str] = None,
        unit_price: Any = 0,
        expiry_date: Optional[date] = None,
        received_date: Optional[datetime] = None,
        source_details: Optional[Dict[str, Any]] = None,
        certificate_file_name: Optional[str] = None,
        certificate_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Batch:
        if warehouse_id is None:
            raise MissingWarehouse("warehouse_id is required to create a batch")
        qty = to_qty(quantity)
        if qty < 0:
            raise InvalidQuantity("quantity must be >= 0", context={"quantity": str(qty)})
        initial = qty if initial_quantity is None else to_qty(initial_quantity, field="initial_quantity")
        if initial < 0:
            raise InvalidQuantity(
                "initial_quantity must be >= 0", context={"initial_quantity": str(initial)}
            )

        if await session.get(Item, int(item_id)) is None:
            raise NotFound(f"item {item_id} not found", context={"item_id": int(item_id)})
        if await session.get(Warehouse, int(warehouse_id)) is None:
            raise NotFound(
                f"warehouse {warehouse_id} not found", context={"warehouse_id": int(warehouse_id)}
            )

        lot = (lot_number or "").strip() or (batch_number or "").strip()
        if not lot:
            lot = await self.lots.next(session)

        batch = Batch(
            item_id=int(item_id),
            warehouse_id=int(warehouse_id),
            lot_number=lot,
            batch_number=(batch_number or "").strip() or lot,
            quantity=qty,
            initial_quantity=initial,
            unit_price=to_qty(unit_price or 0, field="unit_price"),
            expiry_date=expiry_date,
            received_date=received_date or utcnow(),
            source_details=dict(source_details) if source_details else None,
            certificate_file_name=certificate_file_name,
            certificate_url=certificate_url,
            notes=notes,
            version=1,
        )
        session.add(batch)
        await session.flush()
        log.info(
            "batch created id=%s item=%s wh=%s lot=%s qty=%s",
            batch.id, batch.item_id, batch.warehouse_id, batch.lot_number, qty,
        )
        return batch

    async def adjust_batch_quantity(
        self,
        session: AsyncSession,
        *,
        batch_id: int,
        delta: Any,
        initial_delta: Any = None,
    ) -> Batch:
        """
        Apply signed deltas under a version check; retried on conflict.

        - NotFound        batch missing
        - InvalidQuantity resulting quantity (or initial_quantity) < 0
        """
        d = to_qty(delta, field="delta")
        di = ZERO if initial_delta is None else to_qty(initial_delta, field="initial_delta")

        async def attempt(_i: int) -> Optional[Batch]:
            batch = await self.get_batch(session, batch_id)
            new_qty = db_qty(batch.quantity) + d
            new_initial = db_qty(batch.initial_quantity) + di
            if new_qty < 0:
                raise InvalidQuantity(
                    f"batch {batch_id} quantity would become negative",
                    context={
                        "batch_id": int(batch_id),
                        "quantity": str(db_qty(batch.quantity)),
                        "delta": str(d),
                    },
                )
            if new_initial < 0:
                raise InvalidQuantity(
                    f"batch {batch_id} initial_quantity would become negative",
                    context={"batch_id": int(batch_id), "initial_delta": str(di)},
                )
            res = await session.execute(
                update(Batch)
                .where(Batch.id == int(batch_id), Batch.version == int(batch.version))
                .values(quantity=new_qty, initial_quantity=new_initial, version=int(batch.version) + 1)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return None
            return await self.get_batch(session, batch_id)

        return await cas_retry(attempt, resource="batch", key=int(batch_id))

    async def claim_batch(self, session: AsyncSession, *, batch_id: int, version: int) -> Optional[int]:
        """
        Bump the batch version iff it is still ``version``.

        Anything that decides on a batch's availability (reserve, issue, a
        downward correction, a transfer) claims the batch at the version it
        read, so a plan made on a stale snapshot never gets applied. Returns the
        new version, or None when the batch changed in between.
        """
        res = await session.execute(
            update(Batch)
            .where(Batch.id == int(batch_id), Batch.version == int(version))
            .values(version=int(version) + 1)
            .execution_options(synchronize_session=False)
        )
        return int(version) + 1 if res.rowcount == 1 else None

    async def delete_batch(
        self,
        session: AsyncSession,
        *,
        batch_id: int,
        expected_version: Optional[int] = None,
    ) -> Batch:
        """
        Delete a batch; blocked while any active reservation references it.

        With ``expected_version`` the row is only removed if nothing touched it
        since that version was read (ConcurrentModification otherwise).
        """
        batch = await self.get_batch(session, batch_id)
        in_use = await self.active_reserved_quantity(session, batch.id)
        if in_use > 0:
            raise BatchInUse(
                f"batch {batch_id} has active reservations",
                context={"batch_id": int(batch_id), "reserved_quantity": str(in_use)},
            )
        stmt = delete(Batch).where(Batch.id == int(batch_id))
        if expected_version is not None:
            stmt = stmt.where(Batch.version == int(expected_version))
        res = await session.execute(stmt)
        if res.rowcount != 1:
            raise ConcurrentModification(
                f"batch {batch_id} changed before it could be deleted",
                context={
                    "resource": "batch",
                    "key": str(batch_id),
                    "expected_version": expected_version,
                },
            )
        log.info("batch deleted id=%s item=%s wh=%s", batch.id, batch.item_id, batch.warehouse_id)
        return batch
