# stockledger/services/reservation_service.py
from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import get_settings
from stockledger.core.tx import atomic
from stockledger.models.enums import AllocationPolicy, LedgerType, ReservationStatus
from stockledger.models.item import Item
from stockledger.models.reservation import Reservation
from stockledger.obs.metrics import inventory_operations_total
from stockledger.services.allocator import BatchAllocator
from stockledger.services.batch_store import BatchStore
from stockledger.services.errors import InvalidQuantity
from stockledger.services.inventory_types import (
    BatchAllocation,
    CancelResult,
    DomainEvent,
    JobHolds,
    ReserveResult,
)
from stockledger.services.ledger_writer import LedgerRecorder
from stockledger.services.reconciler import QuantityReconciler, load_item
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import ZERO, db_qty, positive_qty, to_qty

log = logging.getLogger("stockledger.reservations")

ACTIVE = ReservationStatus.ACTIVE.value


def _norm_job(job_reference_id: Any) -> str:
    job = str(job_reference_id or "").strip()
    if not job:
        raise InvalidQuantity("job_reference_id is required", context={"field": "job_reference_id"})
    return job


def _group_by_batch(rows: Sequence[Reservation]) -> List[BatchAllocation]:
    acc: "OrderedDict[Optional[int], Decimal]" = OrderedDict()
    for r in rows:
        acc[r.batch_id] = acc.get(r.batch_id, ZERO) + db_qty(r.quantity)
    return [BatchAllocation(batch_id=bid, quantity=q) for bid, q in acc.items() if bid is not None]


class ReservationService:
    """
    Soft holds against a job reference.

    - reserve    idempotent per (job, item): an existing hold that already covers
                 the request is returned as is, a smaller one is topped up
    - cancel     total for (job, item), the only path that cancels a hold
    - complete   closes holds once the job's consumption has been issued; it
                 releases like cancel and is the one other status change

    Item.booked_quantity follows every change through a compare-and-apply update.
    Releasing more than is booked is treated as drift: clamped at 0 and logged.
    """

    def __init__(
        self,
        allocator: Optional[BatchAllocator] = None,
        ledger: Optional[LedgerRecorder] = None,
        reconciler: Optional[QuantityReconciler] = None,
    ) -> None:
        self.store = BatchStore()
        self.allocator = allocator or BatchAllocator(self.store)
        self.ledger = ledger or LedgerRecorder()
        self.reconciler = reconciler or QuantityReconciler()

    # ---------------------------------------------------------------
    # reads
    # ---------------------------------------------------------------
    async def _active_rows(
        self,
        session: AsyncSession,
        *,
        job: str,
        item_id: Optional[int] = None,
        batch_id: Optional[int] = None,
    ) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.job_reference_id == job, Reservation.status == ACTIVE
        )
        if item_id is not None:
            stmt = stmt.where(Reservation.item_id == int(item_id))
        if batch_id is not None:
            stmt = stmt.where(Reservation.batch_id == int(batch_id))
        stmt = stmt.order_by(Reservation.id.asc()).execution_options(populate_existing=True)
        return list((await session.execute(stmt)).scalars().all())

    async def list_for_job(
        self,
        session: AsyncSession,
        *,
        job_reference_id: str,
        item_id: Optional[int] = None,
        status: Optional[ReservationStatus | str] = None,
    ) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.job_reference_id == _norm_job(job_reference_id))
        if item_id is not None:
            stmt = stmt.where(Reservation.item_id == int(item_id))
        if status is not None:
            stmt = stmt.where(Reservation.status == ReservationStatus(status).value)
        stmt = stmt.order_by(Reservation.id.asc()).execution_options(populate_existing=True)
        return list((await session.execute(stmt)).scalars().all())

    async def list_for_batch(self, session: AsyncSession, *, batch_id: int) -> List[Reservation]:
        """Active holds on one batch, oldest first."""
        await self.store.get_batch(session, batch_id)
        stmt = (
            select(Reservation)
            .where(Reservation.batch_id == int(batch_id), Reservation.status == ACTIVE)
            .order_by(Reservation.id.asc())
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def list_for_item(self, session: AsyncSession, *, item_id: int) -> List[JobHolds]:
        """Who is holding this item: active holds grouped by job, in order of first hold."""
        await load_item(session, item_id)
        rows = (
            await session.execute(
                select(Reservation)
                .where(Reservation.item_id == int(item_id), Reservation.status == ACTIVE)
                .order_by(Reservation.id.asc())
                .execution_options(populate_existing=True)
            )
        ).scalars().all()

        by_job: "OrderedDict[str, List[Reservation]]" = OrderedDict()
        for r in rows:
            by_job.setdefault(r.job_reference_id, []).append(r)
        return [
            JobHolds(
                job_reference_id=job,
                item_id=int(item_id),
                total_quantity=sum((db_qty(r.quantity) for r in held), ZERO),
                batches=_group_by_batch(held),
                reservation_ids=[int(r.id) for r in held],
            )
            for job, held in by_job.items()
        ]

    # ---------------------------------------------------------------
    # booked_quantity (compare-and-apply)
    # ---------------------------------------------------------------
    async def _shift_booked(self, session: AsyncSession, *, item_id: int, delta: Decimal) -> Decimal:
        async def attempt(_i: int) -> Optional[Decimal]:
            item = await load_item(session, item_id)
            current = db_qty(item.booked_quantity)
            new = current + delta
            if new < 0:
                log.warning(
                    "booked_quantity drift on item %s: %s %+f would go negative; clamped to 0",
                    item_id, current, float(delta),
                )
                new = ZERO
            res = await session.execute(
                update(Item)
                .where(Item.id == int(item_id), Item.version == int(item.version))
                .values(booked_quantity=new, version=int(item.version) + 1)
                .execution_options(synchronize_session=False)
            )
            return new if res.rowcount == 1 else None

        return await cas_retry(attempt, resource="item", key=int(item_id))

    # ---------------------------------------------------------------
    # reserve
    # ---------------------------------------------------------------
    async def reserve(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        quantity: Any,
        job_reference_id: str,
        policy: AllocationPolicy | str = AllocationPolicy.FEFO,
        pinned_batch_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> ReserveResult:
        qty = positive_qty(quantity)
        job = _norm_job(job_reference_id)

        async with atomic(session):
            item = await load_item(session, item_id, for_update=True)
            held_rows = await self._active_rows(
                session, job=job, item_id=item_id, batch_id=pinned_batch_id
            )
            held = sum((db_qty(r.quantity) for r in held_rows), ZERO)

            if held >= qty:
                log.info("reserve no-op job=%s item=%s held=%s requested=%s", job, item_id, held, qty)
                return ReserveResult(
                    item_id=int(item_id),
                    job_reference_id=job,
                    reserved_batches=_group_by_batch(held_rows),
                    newly_reserved=[],
                    already_reserved=True,
                    booked_quantity=db_qty(item.booked_quantity),
                    events=[],
                )

            # top-up: the job's own holds count as taken, so only free stock is used
            plan = await self.allocator.allocate_claimed(
                session,
                item_id=item_id,
                quantity=qty - held,
                policy=policy,
                warehouse_id=warehouse_id,
                pinned_batch_id=pinned_batch_id,
                job_reference_id=None,
                purpose="reserve",
            )

            events: List[DomainEvent] = []
            for leg in plan:
                row = (await self._active_rows(session, job=job, item_id=item_id, batch_id=leg.batch_id))
                if row:
                    res = row[0]
                    res.quantity = db_qty(res.quantity) + leg.quantity
                else:
                    res = Reservation(
                        item_id=int(item_id),
                        batch_id=leg.batch_id,
                        job_reference_id=job,
                        quantity=leg.quantity,
                        status=ACTIVE,
                    )
                    session.add(res)
                await session.flush()

                batch = await self.store.get_batch(session, leg.batch_id)
                await self.ledger.append(
                    session,
                    item_id=int(item_id),
                    type=LedgerType.RESERVE,
                    quantity=leg.quantity,
                    batch_id=leg.batch_id,
                    previous_quantity=batch.quantity,
                    warehouse_id=leg.warehouse_id,
                    reference=job,
                    details={"job_reference_id": job, "reservation_id": int(res.id)},
                    actor_id=actor_id,
                )
                events.append(
                    DomainEvent(
                        "reservation.created",
                        int(item_id),
                        {
                            "job_reference_id": job,
                            "reservation_id": int(res.id),
                            "batch_id": leg.batch_id,
                            "quantity": str(leg.quantity),
                        },
                    )
                )

            booked = await self._shift_booked(
                session, item_id=item_id, delta=sum((leg.quantity for leg in plan), ZERO)
            )
            current = await self._active_rows(session, job=job, item_id=item_id)

        inventory_operations_total.labels("reserve").inc()
        log.info("reserved job=%s item=%s qty=%s legs=%d", job, item_id, qty - held, len(plan))
        return ReserveResult(
            item_id=int(item_id),
            job_reference_id=job,
            reserved_batches=_group_by_batch(current),
            newly_reserved=plan,
            already_reserved=False,
            booked_quantity=booked,
            events=events,
        )

    # ---------------------------------------------------------------
    # release paths
    # ---------------------------------------------------------------
    async def _release(
        self,
        session: AsyncSession,
        rows: Sequence[Reservation],
        *,
        status: ReservationStatus,
        actor_id: Optional[str],
        reason: str,
    ) -> Dict[int, Decimal]:
        """Move active rows to ``status`` with one UNRESERVE entry each; returns released quantity per item."""
        released: Dict[int, Decimal] = {}
        for r in rows:
            r.status = status.value
            q = db_qty(r.quantity)
            released[int(r.item_id)] = released.get(int(r.item_id), ZERO) + q
            await self.ledger.append(
                session,
                item_id=int(r.item_id),
                type=LedgerType.UNRESERVE,
                quantity=q,
                batch_id=r.batch_id,
                reference=r.job_reference_id,
                details={
                    "job_reference_id": r.job_reference_id,
                    "reservation_id": int(r.id),
                    "status": status.value,
                    "reason": reason,
                },
                actor_id=actor_id,
            )
        await session.flush()
        return released

    async def cancel(
        self,
        session: AsyncSession,
        *,
        job_reference_id: str,
        item_id: int,
        actor_id: Optional[str] = None,
    ) -> CancelResult:
        """Cancel every active hold of (job, item). Canceling nothing is a no-op."""
        job = _norm_job(job_reference_id)
        async with atomic(session):
            item = await load_item(session, item_id, for_update=True)
            rows = await self._active_rows(session, job=job, item_id=item_id)
            if not rows:
                return CancelResult(
                    item_id=int(item_id),
                    job_reference_id=job,
                    released_quantity=ZERO,
                    reservation_ids=[],
                    booked_quantity=db_qty(item.booked_quantity),
                    events=[],
                )
            released = await self._release(
                session, rows, status=ReservationStatus.CANCELED, actor_id=actor_id, reason="cancel"
            )
            total = released.get(int(item_id), ZERO)
            booked = await self._shift_booked(session, item_id=item_id, delta=-total)

        inventory_operations_total.labels("cancel").inc()
        log.info("canceled job=%s item=%s qty=%s rows=%d", job, item_id, total, len(rows))
        return CancelResult(
            item_id=int(item_id),
            job_reference_id=job,
            released_quantity=total,
            reservation_ids=[int(r.id) for r in rows],
            booked_quantity=booked,
            events=[
                DomainEvent(
                    "reservation.canceled",
                    int(item_id),
                    {"job_reference_id": job, "quantity": str(total), "reservation_ids": [int(r.id) for r in rows]},
                )
            ],
        )

    async def complete(
        self,
        session: AsyncSession,
        *,
        job_reference_id: str,
        item_id: int,
        actor_id: Optional[str] = None,
    ) -> CancelResult:
        """
        Close (job, item) holds once the job has issued what it held. Same
        bookkeeping as cancel (UNRESERVE entries, booked_quantity released), but
        the rows end up COMPLETED and the entries carry reason "complete".
        """
        job = _norm_job(job_reference_id)
        async with atomic(session):
            item = await load_item(session, item_id, for_update=True)
            rows = await self._active_rows(session, job=job, item_id=item_id)
            if not rows:
                booked = db_qty(item.booked_quantity)
                total = ZERO
            else:
                released = await self._release(
                    session, rows, status=ReservationStatus.COMPLETED, actor_id=actor_id, reason="complete"
                )
                total = released.get(int(item_id), ZERO)
                booked = await self._shift_booked(session, item_id=item_id, delta=-total)

        if rows:
            inventory_operations_total.labels("complete").inc()
        return CancelResult(
            item_id=int(item_id),
            job_reference_id=job,
            released_quantity=total,
            reservation_ids=[int(r.id) for r in rows],
            booked_quantity=booked,
            events=[
                DomainEvent("reservation.completed", int(item_id), {"job_reference_id": job, "quantity": str(total)})
            ]
            if rows
            else [],
        )

    async def cancel_job(
        self,
        session: AsyncSession,
        *,
        job_reference_id: str,
        actor_id: Optional[str] = None,
    ) -> List[CancelResult]:
        """cancel() for every item the job currently holds."""
        job = _norm_job(job_reference_id)
        async with atomic(session):
            item_ids = sorted({int(r.item_id) for r in await self._active_rows(session, job=job)})
            results = [
                await self.cancel(session, job_reference_id=job, item_id=i, actor_id=actor_id)
                for i in item_ids
            ]
        return results

    async def cleanup_micro_reservations(
        self,
        session: AsyncSession,
        *,
        threshold: Any = None,
        actor_id: Optional[str] = None,
    ) -> Dict[int, Decimal]:
        """
        Cancel active holds smaller than ``threshold`` (rounding dust left by
        partial consumption). Returns released quantity per item.
        """
        limit = to_qty(threshold if threshold is not None else get_settings().MICRO_RESERVATION_THRESHOLD)
        async with atomic(session):
            rows = list(
                (
                    await session.execute(
                        select(Reservation)
                        .where(Reservation.status == ACTIVE, Reservation.quantity < limit)
                        .order_by(Reservation.id.asc())
                        .execution_options(populate_existing=True)
                    )
                )
                .scalars()
                .all()
            )
            for item_id in sorted({int(r.item_id) for r in rows}):
                await load_item(session, item_id, for_update=True)
            released = await self._release(
                session, rows, status=ReservationStatus.CANCELED, actor_id=actor_id, reason="micro_cleanup"
            )
            for item_id, q in released.items():
                await self._shift_booked(session, item_id=item_id, delta=-q)

        if rows:
            log.info("micro reservation cleanup: %d rows below %s", len(rows), limit)
        return released

    async def recalculate_booked(self, session: AsyncSession, *, item_id: int) -> Decimal:
        async with atomic(session):
            return await self.reconciler.recalculate_booked(session, item_id=item_id)
