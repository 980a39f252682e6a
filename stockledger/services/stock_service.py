# stockledger/services/stock_service.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.tx import atomic
from stockledger.models.batch import Batch
from stockledger.models.enums import AllocationPolicy, LedgerType
from stockledger.models.warehouse import Warehouse
from stockledger.obs.metrics import inventory_operations_total
from stockledger.services.allocator import BatchAllocator
from stockledger.services.batch_store import BatchStore
from stockledger.services.errors import InvalidQuantity, MissingWarehouse, NotFound
from stockledger.services.inventory_types import (
    AdjustResult,
    DomainEvent,
    IssueResult,
    ReceiveResult,
)
from stockledger.services.ledger_writer import LedgerRecorder
from stockledger.services.reconciler import QuantityReconciler, load_item
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import ZERO, db_qty, positive_qty, to_qty

log = logging.getLogger("stockledger.stock")


async def _require_warehouse(session: AsyncSession, warehouse_id: Optional[int]) -> int:
    if warehouse_id is None:
        raise MissingWarehouse("warehouse_id is required")
    if await session.get(Warehouse, int(warehouse_id)) is None:
        raise NotFound(f"warehouse {warehouse_id} not found", context={"warehouse_id": int(warehouse_id)})
    return int(warehouse_id)


def _reconciled(item_id: int, quantity) -> DomainEvent:
    return DomainEvent("item.quantity_changed", int(item_id), {"quantity": str(quantity)})


class StockService:
    """
    Physical stock entry points: receive / issue / adjust / delete.

    Each call is one atomic unit:
        batch mutation(s) -> ledger entries -> reconcile item.quantity
    A failure anywhere rolls the whole unit back (compensation is the SAVEPOINT
    rollback), so a rejected issue never leaves part of the stock consumed.
    """

    def __init__(
        self,
        store: Optional[BatchStore] = None,
        allocator: Optional[BatchAllocator] = None,
        ledger: Optional[LedgerRecorder] = None,
        reconciler: Optional[QuantityReconciler] = None,
    ) -> None:
        self.store = store or BatchStore()
        self.allocator = allocator or BatchAllocator(self.store)
        self.ledger = ledger or LedgerRecorder()
        self.reconciler = reconciler or QuantityReconciler()

    # ---------------------------------------------------------------
    # receive
    # ---------------------------------------------------------------
    async def receive(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        quantity: Any,
        warehouse_id: Optional[int],
        lot_number: Optional[str] = None,
        batch_number: Optional[str] = None,
        expiry_date: Optional[date] = None,
        unit_price: Any = None,
        received_date: Optional[datetime] = None,
        source_details: Optional[Dict[str, Any]] = None,
        certificate_file_name: Optional[str] = None,
        certificate_url: Optional[str] = None,
        notes: Optional[str] = None,
        reference: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ReceiveResult:
        """
        Goods in.

        - a supplied lot number that matches a batch of the same item in the
          same warehouse tops that batch up (quantity and initial_quantity)
        - otherwise a new batch is created; the lot number is generated when absent
        """
        if warehouse_id is None:
            raise MissingWarehouse("warehouse_id is required to receive stock")
        qty = positive_qty(quantity)
        lot = (lot_number or "").strip() or None

        async with atomic(session):
            await load_item(session, item_id, for_update=True)
            wh = await _require_warehouse(session, warehouse_id)

            existing: Optional[Batch] = None
            if lot:
                found = await self.store.find_batches_by_lot(
                    session, lot_number=lot, item_id=item_id, warehouse_id=wh
                )
                existing = found[0] if found else None

            if existing is not None:
                previous = db_qty(existing.quantity)
                batch = await self.store.adjust_batch_quantity(
                    session, batch_id=existing.id, delta=qty, initial_delta=qty
                )
                created = False
            else:
                previous = ZERO
                batch = await self.store.create_batch(
                    session,
                    item_id=item_id,
                    warehouse_id=wh,
                    quantity=qty,
                    lot_number=lot,
                    batch_number=batch_number,
                    unit_price=unit_price or 0,
                    expiry_date=expiry_date,
                    received_date=received_date,
                    source_details=source_details,
                    certificate_file_name=certificate_file_name,
                    certificate_url=certificate_url,
                    notes=notes,
                )
                created = True

            entry_id = await self.ledger.append(
                session,
                item_id=int(item_id),
                type=LedgerType.RECEIVE,
                quantity=qty,
                batch_id=int(batch.id),
                previous_quantity=previous,
                warehouse_id=wh,
                reference=reference,
                details={
                    "lot_number": batch.lot_number,
                    "created_batch": created,
                    "source_details": source_details or None,
                },
                actor_id=actor_id,
            )
            total = await self.reconciler.recalculate(session, item_id=item_id)

        inventory_operations_total.labels("receive").inc()
        log.info(
            "received item=%s wh=%s qty=%s batch=%s lot=%s created=%s",
            item_id, wh, qty, batch.id, batch.lot_number, created,
        )
        return ReceiveResult(
            batch=batch,
            created=created,
            ledger_entry_id=entry_id,
            item_quantity=total,
            events=[
                DomainEvent(
                    "stock.received",
                    int(item_id),
                    {"batch_id": int(batch.id), "warehouse_id": wh, "quantity": str(qty)},
                ),
                _reconciled(item_id, total),
            ],
        )

    # ---------------------------------------------------------------
    # issue
    # ---------------------------------------------------------------
    async def issue(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        quantity: Any,
        warehouse_id: Optional[int],
        policy: AllocationPolicy | str = AllocationPolicy.FEFO,
        pinned_batch_id: Optional[int] = None,
        job_reference_id: Optional[str] = None,
        reference: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> IssueResult:
        """
        Physical consumption. Reservations of other jobs limit what can be taken;
        when job_reference_id is given, that job's own holds stay usable.
        One ISSUE entry per batch touched.
        """
        qty = positive_qty(quantity)
        job = (job_reference_id or "").strip() or None

        async with atomic(session):
            wh = await _require_warehouse(session, warehouse_id)
            await load_item(session, item_id, for_update=True)
            plan = await self.allocator.allocate_claimed(
                session,
                item_id=item_id,
                quantity=qty,
                policy=policy,
                warehouse_id=wh,
                pinned_batch_id=pinned_batch_id,
                job_reference_id=job,
                purpose="issue",
            )

            entry_ids: List[int] = []
            for leg in plan:
                batch = await self.store.adjust_batch_quantity(
                    session, batch_id=leg.batch_id, delta=-leg.quantity
                )
                entry_ids.append(
                    await self.ledger.append(
                        session,
                        item_id=int(item_id),
                        type=LedgerType.ISSUE,
                        quantity=leg.quantity,
                        batch_id=leg.batch_id,
                        previous_quantity=db_qty(batch.quantity) + leg.quantity,
                        warehouse_id=wh,
                        reference=reference or job,
                        details={"job_reference_id": job, "lot_number": leg.lot_number},
                        actor_id=actor_id,
                    )
                )
            total = await self.reconciler.recalculate(session, item_id=item_id)

        inventory_operations_total.labels("issue").inc()
        log.info("issued item=%s wh=%s qty=%s legs=%d", item_id, wh, qty, len(plan))
        return IssueResult(
            item_id=int(item_id),
            quantity=qty,
            issued=plan,
            ledger_entry_ids=entry_ids,
            item_quantity=total,
            events=[
                DomainEvent(
                    "stock.issued",
                    int(item_id),
                    {
                        "warehouse_id": wh,
                        "quantity": str(qty),
                        "batches": [{"batch_id": a.batch_id, "quantity": str(a.quantity)} for a in plan],
                    },
                ),
                _reconciled(item_id, total),
            ],
        )

    # ---------------------------------------------------------------
    # operator corrections
    # ---------------------------------------------------------------
    async def adjust(
        self,
        session: AsyncSession,
        *,
        batch_id: int,
        delta: Any,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> AdjustResult:
        d = to_qty(delta, field="delta")
        if d == 0:
            raise InvalidQuantity("delta must not be zero", context={"field": "delta"})

        async with atomic(session):
            before = await self.store.get_batch(session, batch_id)
            await load_item(session, before.item_id, for_update=True)

            async def check_floor(_i: int) -> Optional[bool]:
                # a correction may not eat into stock other jobs are holding
                current = await self.store.get_batch(session, batch_id, for_update=True)
                qty = db_qty(current.quantity)
                reserved = await self.store.active_reserved_quantity(session, batch_id)
                if qty + d < reserved:
                    raise InvalidQuantity(
                        f"batch {batch_id} would drop below its reserved quantity",
                        context={
                            "batch_id": int(batch_id),
                            "quantity": str(qty),
                            "reserved_quantity": str(reserved),
                            "delta": str(d),
                        },
                    )
                claimed = await self.store.claim_batch(session, batch_id=batch_id, version=int(current.version))
                return True if claimed is not None else None

            if d < 0:
                await cas_retry(check_floor, resource="batch", key=int(batch_id))
            batch = await self.store.adjust_batch_quantity(session, batch_id=batch_id, delta=d)
            previous = db_qty(batch.quantity) - d
            entry_id = await self.ledger.append(
                session,
                item_id=int(batch.item_id),
                type=LedgerType.ADJUST,
                quantity=d,
                batch_id=int(batch.id),
                previous_quantity=previous,
                warehouse_id=int(batch.warehouse_id),
                reference=reason,
                details={"reason": reason} if reason else None,
                actor_id=actor_id,
            )
            total = await self.reconciler.recalculate(session, item_id=batch.item_id)

        inventory_operations_total.labels("adjust").inc()
        log.info("adjusted batch=%s delta=%s reason=%s", batch_id, d, reason)
        return AdjustResult(
            batch=batch,
            previous_quantity=previous,
            ledger_entry_id=entry_id,
            item_quantity=total,
            events=[
                DomainEvent("batch.adjusted", int(batch.item_id), {"batch_id": int(batch.id), "delta": str(d)}),
                _reconciled(batch.item_id, total),
            ],
        )

    async def delete_batch(
        self,
        session: AsyncSession,
        *,
        batch_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> List[DomainEvent]:
        """Operator delete; BatchInUse while an active reservation references it."""
        async with atomic(session):
            current = await self.store.get_batch(session, batch_id)
            await load_item(session, current.item_id, for_update=True)
            batch = await self.store.delete_batch(session, batch_id=batch_id)
            qty = db_qty(batch.quantity)
            await self.ledger.append(
                session,
                item_id=int(batch.item_id),
                type=LedgerType.DELETE_BATCH,
                quantity=qty,
                batch_id=int(batch.id),
                previous_quantity=qty,
                warehouse_id=int(batch.warehouse_id),
                reference=reason,
                details={"lot_number": batch.lot_number, "reason": reason or "operator"},
                actor_id=actor_id,
            )
            total = await self.reconciler.recalculate(session, item_id=batch.item_id)

        inventory_operations_total.labels("delete_batch").inc()
        return [
            DomainEvent("batch.deleted", int(batch.item_id), {"batch_id": int(batch.id)}),
            _reconciled(batch.item_id, total),
        ]

