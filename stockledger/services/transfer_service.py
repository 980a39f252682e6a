# stockledger/services/transfer_service.py
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.tx import atomic
from stockledger.models.batch import Batch
from stockledger.models.enums import LedgerType, ReservationStatus
from stockledger.models.reservation import Reservation
from stockledger.models.warehouse import Warehouse
from stockledger.obs.metrics import inventory_operations_total, inventory_shortage_total
from stockledger.services.batch_store import BatchStore
from stockledger.services.errors import InsufficientQuantity, NotFound, WrongWarehouse
from stockledger.services.inventory_types import DomainEvent, TransferResult
from stockledger.services.ledger_writer import LedgerRecorder
from stockledger.services.reconciler import QuantityReconciler, load_item
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import QTY_PLACES, ZERO, db_qty, positive_qty

log = logging.getLogger("stockledger.transfer")


class TransferService:
    """
    Move (part of) a batch to another warehouse.

    Target selection:
        same item + same lot number in the target warehouse, and the expiry
        matches (both empty or equal) -> merge; anything else -> new batch

    Cost basis:
        partial: initial_quantity moves in proportion quantity / source.quantity
        full:    the whole initial_quantity moves and the source is deleted once
                 it is empty (relabeling, not a split)

    Active reservations follow the stock so that no job loses its hold.
    """

    def __init__(
        self,
        store: Optional[BatchStore] = None,
        ledger: Optional[LedgerRecorder] = None,
        reconciler: Optional[QuantityReconciler] = None,
    ) -> None:
        self.store = store or BatchStore()
        self.ledger = ledger or LedgerRecorder()
        self.reconciler = reconciler or QuantityReconciler()

    async def _find_merge_target(self, session: AsyncSession, src: Batch, target_warehouse_id: int) -> Optional[Batch]:
        stmt = (
            select(Batch)
            .where(
                Batch.item_id == src.item_id,
                Batch.warehouse_id == int(target_warehouse_id),
                Batch.lot_number == src.lot_number,
                Batch.id != src.id,
            )
            .order_by(Batch.id.asc())
            .execution_options(populate_existing=True)
        )
        for cand in (await session.execute(stmt)).scalars().all():
            if cand.expiry_date == src.expiry_date:
                return cand
        return None

    async def _move_reservations(
        self,
        session: AsyncSession,
        *,
        src_id: int,
        dst_id: int,
        excess: Decimal,
        full: bool,
    ) -> List[int]:
        """
        Re-point active holds from src to dst.

        full    -> every active hold moves
        partial -> only ``excess`` (reserved minus what stays behind) moves,
                   newest holds first; a hold straddling the line is split
        """
        rows = list(
            (
                await session.execute(
                    select(Reservation)
                    .where(
                        Reservation.batch_id == int(src_id),
                        Reservation.status == ReservationStatus.ACTIVE.value,
                    )
                    .order_by(Reservation.id.desc())
                    .execution_options(populate_existing=True)
                )
            )
            .scalars()
            .all()
        )
        moved: List[int] = []
        if full:
            for r in rows:
                r.batch_id = int(dst_id)
                moved.append(int(r.id))
            await session.flush()
            return moved

        left = excess
        for r in rows:
            if left <= 0:
                break
            q = db_qty(r.quantity)
            if q <= left:
                r.batch_id = int(dst_id)
                moved.append(int(r.id))
                left -= q
            else:
                r.quantity = q - left
                split = Reservation(
                    item_id=r.item_id,
                    batch_id=int(dst_id),
                    job_reference_id=r.job_reference_id,
                    quantity=left,
                    status=ReservationStatus.ACTIVE.value,
                )
                session.add(split)
                await session.flush()
                moved.append(int(split.id))
                left = ZERO
        await session.flush()
        return moved

    async def transfer(
        self,
        session: AsyncSession,
        *,
        batch_id: int,
        source_warehouse_id: int,
        target_warehouse_id: int,
        quantity: Any,
        actor_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> TransferResult:
        qty = positive_qty(quantity)
        if int(source_warehouse_id) == int(target_warehouse_id):
            raise WrongWarehouse(
                "source and target warehouse are the same",
                context={"warehouse_id": int(source_warehouse_id)},
            )

        async with atomic(session):
            first = await self.store.get_batch(session, batch_id)
            item_id = int(first.item_id)
            await load_item(session, item_id, for_update=True)
            if await session.get(Warehouse, int(target_warehouse_id)) is None:
                raise NotFound(
                    f"warehouse {target_warehouse_id} not found",
                    context={"warehouse_id": int(target_warehouse_id)},
                )

            async def claim_source(_i: int) -> Optional[Batch]:
                src = await self.store.get_batch(session, batch_id, for_update=True)
                if int(src.warehouse_id) != int(source_warehouse_id):
                    raise WrongWarehouse(
                        f"batch {batch_id} is in warehouse {src.warehouse_id}, not {source_warehouse_id}",
                        context={
                            "batch_id": int(batch_id),
                            "warehouse_id": int(source_warehouse_id),
                            "batch_warehouse_id": int(src.warehouse_id),
                        },
                    )
                if qty > db_qty(src.quantity):
                    inventory_shortage_total.labels("transfer").inc()
                    raise InsufficientQuantity(
                        f"batch {batch_id} holds {db_qty(src.quantity)}, cannot transfer {qty}",
                        item_id=item_id,
                        batch_id=int(batch_id),
                        required=qty,
                        available=db_qty(src.quantity),
                        path="transfer",
                    )
                claimed = await self.store.claim_batch(session, batch_id=src.id, version=int(src.version))
                return src if claimed is not None else None

            # the plan below is made on this snapshot; the claim keeps it current
            src = await cas_retry(claim_source, resource="batch", key=int(batch_id))
            src_qty = db_qty(src.quantity)
            src_initial = db_qty(src.initial_quantity)

            full = qty == src_qty
            if full:
                moved_initial = src_initial
            else:
                moved_initial = (src_initial * qty / src_qty).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)

            target = await self._find_merge_target(session, src, target_warehouse_id)
            merged = target is not None
            if target is not None:
                target = await self.store.adjust_batch_quantity(
                    session, batch_id=target.id, delta=qty, initial_delta=moved_initial
                )
            else:
                target = await self.store.create_batch(
                    session,
                    item_id=item_id,
                    warehouse_id=int(target_warehouse_id),
                    quantity=qty,
                    initial_quantity=moved_initial,
                    lot_number=src.lot_number,
                    batch_number=src.batch_number,
                    unit_price=src.unit_price,
                    expiry_date=src.expiry_date,
                    received_date=src.received_date,
                    source_details=src.source_details,
                    certificate_file_name=src.certificate_file_name,
                    certificate_url=src.certificate_url,
                    notes=src.notes,
                )

            reserved = await self.store.active_reserved_quantity(session, src.id)
            remaining = src_qty - qty
            moved_ids: List[int] = []
            if reserved > 0 and (full or reserved > remaining):
                moved_ids = await self._move_reservations(
                    session,
                    src_id=src.id,
                    dst_id=target.id,
                    excess=reserved - remaining,
                    full=full,
                )

            # the source gives up exactly qty; it is only removed once that leaves it empty
            left = await self.store.adjust_batch_quantity(
                session, batch_id=src.id, delta=-qty, initial_delta=-moved_initial
            )
            deleted = full and db_qty(left.quantity) == 0
            if full and not deleted:
                log.warning(
                    "batch %s gained %s during a full transfer; kept instead of deleted",
                    src.id, db_qty(left.quantity),
                )

            details = {
                "source_batch_id": int(src.id),
                "target_batch_id": int(target.id),
                "lot_number": src.lot_number,
                "merged": merged,
                "full_transfer": deleted,
                "initial_quantity_moved": str(moved_initial),
                "moved_reservation_ids": moved_ids,
            }
            await self.ledger.append(
                session,
                item_id=item_id,
                type=LedgerType.TRANSFER,
                quantity=qty,
                batch_id=int(src.id),
                previous_quantity=db_qty(left.quantity) + qty,
                warehouse_id=int(source_warehouse_id),
                target_warehouse_id=int(target_warehouse_id),
                reference=reference,
                details=details,
                actor_id=actor_id,
            )

            if deleted:
                await self.store.delete_batch(session, batch_id=src.id, expected_version=int(left.version))
                await self.ledger.append(
                    session,
                    item_id=item_id,
                    type=LedgerType.DELETE_BATCH,
                    quantity=ZERO,
                    batch_id=int(src.id),
                    previous_quantity=ZERO,
                    warehouse_id=int(source_warehouse_id),
                    reference=reference,
                    details={"reason": "full_transfer", "target_batch_id": int(target.id)},
                    actor_id=actor_id,
                )

            total = await self.reconciler.recalculate(session, item_id=item_id)

        inventory_operations_total.labels("transfer").inc()
        log.info(
            "transferred batch=%s %s->%s qty=%s target=%s merged=%s full=%s",
            batch_id, source_warehouse_id, target_warehouse_id, qty, target.id, merged, deleted,
        )
        events = [
            DomainEvent(
                "batch.transferred",
                item_id,
                {
                    "source_batch_id": int(batch_id),
                    "target_batch_id": int(target.id),
                    "source_warehouse_id": int(source_warehouse_id),
                    "target_warehouse_id": int(target_warehouse_id),
                    "quantity": str(qty),
                },
            )
        ]
        if deleted:
            events.append(DomainEvent("batch.deleted", item_id, {"batch_id": int(batch_id)}))
        events.append(DomainEvent("item.quantity_changed", item_id, {"quantity": str(total)}))
        return TransferResult(
            item_id=item_id,
            source_batch_id=int(batch_id),
            target_batch_id=int(target.id),
            quantity=qty,
            merged=merged,
            source_deleted=deleted,
            moved_reservation_ids=moved_ids,
            item_quantity=total,
            events=events,
        )
