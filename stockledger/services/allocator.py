# stockledger/services/allocator.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.models.batch import Batch
from stockledger.models.enums import AllocationPolicy, ReservationStatus
from stockledger.models.reservation import Reservation
from stockledger.obs.metrics import inventory_shortage_total
from stockledger.services.batch_store import BatchStore
from stockledger.services.errors import (
    InsufficientBatchQuantity,
    InsufficientQuantity,
    NotFound,
    WrongWarehouse,
)
from stockledger.services.inventory_types import BatchAllocation
from stockledger.services.reconciler import load_item
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import ZERO, as_utc, db_qty, positive_qty, today

log = logging.getLogger("stockledger.allocate")

_FAR_FUTURE = date.max
_EPOCH = datetime.min


def _fefo_key(b: Batch):
    # dated batches first (expiry ASC), undated after; then received ASC, id ASC
    received = as_utc(b.received_date)
    return (
        b.expiry_date is None,
        b.expiry_date or _FAR_FUTURE,
        received.replace(tzinfo=None) if received else _EPOCH,
        int(b.id),
    )


def _fifo_key(b: Batch):
    received = as_utc(b.received_date)
    return (received.replace(tzinfo=None) if received else _EPOCH, int(b.id))


class BatchAllocator:
    """
    Allocation engine (never mutates stock; allocate_claimed only bumps the
    version of the batches it planned on)

    effectively_available(batch) = batch.quantity - Σ active reservations on it,
    where reservations held by ``job_reference_id`` itself are not subtracted.
    That makes re-allocating for the same job idempotent and lets a job issue
    the stock it is holding.

    Usage (caller owns the atomic unit):

        async with atomic(session):
            plan = await allocator.allocate_claimed(session, item_id=..., quantity=...)
            for leg in plan:
                await store.adjust_batch_quantity(session, batch_id=leg.batch_id, delta=-leg.quantity)
    """

    def __init__(self, store: Optional[BatchStore] = None) -> None:
        self.store = store or BatchStore()

    async def reserved_by_batch(
        self,
        session: AsyncSession,
        batch_ids: Sequence[int],
        *,
        exclude_job: Optional[str] = None,
    ) -> Dict[int, Decimal]:
        if not batch_ids:
            return {}
        stmt = (
            select(Reservation.batch_id, func.coalesce(func.sum(Reservation.quantity), 0))
            .where(
                Reservation.batch_id.in_([int(b) for b in batch_ids]),
                Reservation.status == ReservationStatus.ACTIVE.value,
            )
            .group_by(Reservation.batch_id)
        )
        if exclude_job is not None:
            stmt = stmt.where(Reservation.job_reference_id != exclude_job)
        return {int(bid): db_qty(total) for bid, total in (await session.execute(stmt)).all()}

    async def effectively_available(
        self, session: AsyncSession, batch: Batch, *, job_reference_id: Optional[str] = None
    ) -> Decimal:
        reserved = await self.reserved_by_batch(session, [batch.id], exclude_job=job_reference_id)
        return max(ZERO, db_qty(batch.quantity) - reserved.get(int(batch.id), ZERO))

    async def allocate(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        quantity: Any,
        policy: AllocationPolicy | str = AllocationPolicy.FEFO,
        warehouse_id: Optional[int] = None,
        pinned_batch_id: Optional[int] = None,
        job_reference_id: Optional[str] = None,
        allow_expired: bool = True,
        purpose: str = "allocate",
        for_update: bool = False,
    ) -> List[BatchAllocation]:
        """
        All-or-nothing plan: either the full quantity is covered or
        InsufficientQuantity / InsufficientBatchQuantity is raised with the
        shortfall, and nothing is returned.
        """
        need = positive_qty(quantity)
        await load_item(session, item_id)

        if pinned_batch_id is not None:
            return [
                await self._allocate_pinned(
                    session,
                    item_id=int(item_id),
                    need=need,
                    warehouse_id=warehouse_id,
                    batch_id=int(pinned_batch_id),
                    job_reference_id=job_reference_id,
                    purpose=purpose,
                    for_update=for_update,
                )
            ]

        policy = AllocationPolicy(policy)
        candidates = await self.store.get_batches_for_item(
            session,
            item_id=item_id,
            warehouse_id=warehouse_id,
            only_available=True,
            for_update=for_update,
        )
        if not allow_expired:
            cutoff = today()
            candidates = [b for b in candidates if b.expiry_date is None or b.expiry_date >= cutoff]
        candidates.sort(key=_fefo_key if policy is AllocationPolicy.FEFO else _fifo_key)

        reserved = await self.reserved_by_batch(
            session, [b.id for b in candidates], exclude_job=job_reference_id
        )

        remaining = need
        plan: List[BatchAllocation] = []
        for b in candidates:
            if remaining <= 0:
                break
            avail = db_qty(b.quantity) - reserved.get(int(b.id), ZERO)
            if avail <= 0:
                continue
            take = min(remaining, avail)
            plan.append(
                BatchAllocation(
                    batch_id=int(b.id),
                    quantity=take,
                    warehouse_id=int(b.warehouse_id),
                    lot_number=b.lot_number,
                    expiry_date=b.expiry_date,
                    version=int(b.version),
                )
            )
            remaining -= take

        if remaining > 0:
            inventory_shortage_total.labels(purpose).inc()
            raise InsufficientQuantity(
                f"insufficient quantity for item {item_id}: need {need}, short {remaining}",
                item_id=int(item_id),
                required=need,
                available=need - remaining,
                path=f"{purpose}.{policy.value}",
                context={
                    "warehouse_id": warehouse_id,
                    "policy": policy.value,
                    "job_reference_id": job_reference_id,
                },
            )

        log.debug("allocation item=%s policy=%s plan=%s", item_id, policy.value, plan)
        return plan

    async def allocate_claimed(self, session: AsyncSession, **kwargs: Any) -> List[BatchAllocation]:
        """
        allocate() for callers that act on the plan (reserve, issue).

        Candidate rows are read FOR UPDATE and every planned batch is then
        claimed at the version it was planned against. If any of them moved in
        between, the plan is thrown away and made again from fresh rows;
        ConcurrentModification once the retry budget is spent. Shortages raise
        straight away.
        """

        async def attempt(_i: int) -> Optional[List[BatchAllocation]]:
            plan = await self.allocate(session, for_update=True, **kwargs)
            for leg in plan:
                if await self.store.claim_batch(session, batch_id=leg.batch_id, version=int(leg.version)) is None:
                    log.info("stale allocation on batch %s, re-planning", leg.batch_id)
                    return None
            return plan

        return await cas_retry(attempt, resource="allocation", key=kwargs.get("item_id"))

    async def _allocate_pinned(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        need: Decimal,
        warehouse_id: Optional[int],
        batch_id: int,
        job_reference_id: Optional[str],
        purpose: str,
        for_update: bool = False,
    ) -> BatchAllocation:
        batch = await self.store.get_batch(session, batch_id, for_update=for_update)
        if int(batch.item_id) != item_id:
            raise NotFound(
                f"batch {batch_id} does not hold item {item_id}",
                context={"batch_id": batch_id, "item_id": item_id, "batch_item_id": batch.item_id},
            )
        if warehouse_id is not None and int(batch.warehouse_id) != int(warehouse_id):
            raise WrongWarehouse(
                f"batch {batch_id} is in warehouse {batch.warehouse_id}, not {warehouse_id}",
                context={
                    "batch_id": batch_id,
                    "warehouse_id": int(warehouse_id),
                    "batch_warehouse_id": int(batch.warehouse_id),
                },
            )

        avail = await self.effectively_available(session, batch, job_reference_id=job_reference_id)
        if avail < need:
            inventory_shortage_total.labels(purpose).inc()
            raise InsufficientBatchQuantity(
                f"batch {batch_id} has {avail} available, {need} requested",
                item_id=item_id,
                batch_id=batch_id,
                required=need,
                available=avail,
                path=f"{purpose}.pinned",
                context={"job_reference_id": job_reference_id},
            )
        return BatchAllocation(
            batch_id=int(batch.id),
            quantity=need,
            warehouse_id=int(batch.warehouse_id),
            lot_number=batch.lot_number,
            expiry_date=batch.expiry_date,
            version=int(batch.version),
        )
