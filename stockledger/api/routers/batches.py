# stockledger/api/routers/batches.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import get_settings
from stockledger.db.session import get_session
from stockledger.schemas.batch import (
    AllocatePreviewIn,
    BatchAdjustIn,
    BatchAdjustOut,
    BatchAllocationOut,
    BatchCreate,
    BatchOut,
    DomainEventOut,
)
from stockledger.services.allocator import BatchAllocator
from stockledger.services.batch_store import BatchStore
from stockledger.services.stock_service import StockService

router = APIRouter(prefix="/batches", tags=["batches"])


@router.post("", response_model=BatchOut, status_code=201)
async def create_batch(body: BatchCreate, session: AsyncSession = Depends(get_session)) -> BatchOut:
    async with session.begin():
        res = await StockService().receive(session, **body.model_dump())
    return BatchOut.model_validate(res.batch)


@router.get("", response_model=List[BatchOut])
async def list_batches(
    item_id: int,
    warehouse_id: int | None = None,
    only_available: bool = False,
    session: AsyncSession = Depends(get_session),
) -> List[BatchOut]:
    rows = await BatchStore().get_batches_for_item(
        session, item_id=item_id, warehouse_id=warehouse_id, only_available=only_available
    )
    return [BatchOut.model_validate(b) for b in rows]


@router.get("/expiring", response_model=List[BatchOut])
async def expiring_batches(
    days: int | None = Query(default=None, ge=0),
    warehouse_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[BatchOut]:
    window = get_settings().EXPIRING_DAYS_DEFAULT if days is None else days
    rows = await BatchStore().get_expiring_batches(session, days=window, warehouse_id=warehouse_id)
    return [BatchOut.model_validate(b) for b in rows]


@router.get("/expired", response_model=List[BatchOut])
async def expired_batches(
    warehouse_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[BatchOut]:
    rows = await BatchStore().get_expired_batches(session, warehouse_id=warehouse_id)
    return [BatchOut.model_validate(b) for b in rows]


@router.get("/by-lot/{lot_number}", response_model=List[BatchOut])
async def batches_by_lot(
    lot_number: str,
    item_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[BatchOut]:
    rows = await BatchStore().find_batches_by_lot(session, lot_number=lot_number, item_id=item_id)
    return [BatchOut.model_validate(b) for b in rows]


@router.get("/{batch_id}", response_model=BatchOut)
async def get_batch(batch_id: int, session: AsyncSession = Depends(get_session)) -> BatchOut:
    return BatchOut.model_validate(await BatchStore().get_batch(session, batch_id))


@router.post("/{batch_id}/adjust", response_model=BatchAdjustOut)
async def adjust_batch(
    batch_id: int, body: BatchAdjustIn, session: AsyncSession = Depends(get_session)
) -> BatchAdjustOut:
    async with session.begin():
        res = await StockService().adjust(
            session, batch_id=batch_id, delta=body.delta, reason=body.reason, actor_id=body.actor_id
        )
    return BatchAdjustOut.model_validate(res)


@router.delete("/{batch_id}", response_model=List[DomainEventOut])
async def delete_batch(
    batch_id: int,
    reason: str | None = None,
    actor_id: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[DomainEventOut]:
    async with session.begin():
        events = await StockService().delete_batch(
            session, batch_id=batch_id, reason=reason, actor_id=actor_id
        )
    return [DomainEventOut.model_validate(e) for e in events]


allocate_router = APIRouter(prefix="/allocate", tags=["allocate"])


@allocate_router.post("/preview", response_model=List[BatchAllocationOut])
async def allocate_preview(
    body: AllocatePreviewIn, session: AsyncSession = Depends(get_session)
) -> List[BatchAllocationOut]:
    """Read-only plan; nothing is reserved or issued."""
    plan = await BatchAllocator().allocate(
        session,
        item_id=body.item_id,
        quantity=body.quantity,
        policy=body.policy,
        warehouse_id=body.warehouse_id,
        pinned_batch_id=body.pinned_batch_id,
        job_reference_id=body.job_reference_id,
        allow_expired=body.allow_expired,
        purpose="preview",
    )
    return [BatchAllocationOut.model_validate(a) for a in plan]
