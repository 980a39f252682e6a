# stockledger/api/routers/ledger.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.db.session import get_session
from stockledger.models.enums import LedgerType
from stockledger.schemas.ledger import LedgerEntryOut, LedgerStatOut
from stockledger.services.ledger_writer import LedgerRecorder
from stockledger.services.reconciler import QuantityReconciler, load_item

router = APIRouter(tags=["ledger"])


@router.get("/ledger/items/{item_id}", response_model=List[LedgerEntryOut])
async def item_history(
    item_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    type: List[LedgerType] | None = Query(default=None),
    batch_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[LedgerEntryOut]:
    await load_item(session, item_id)
    rows = await LedgerRecorder().query_by_item(
        session, item_id=item_id, types=type, batch_id=batch_id
    ).all(limit=limit)
    return [LedgerEntryOut.model_validate(r) for r in rows]


@router.get("/ledger/statistics", response_model=Dict[str, LedgerStatOut])
async def ledger_statistics(
    item_id: int | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, LedgerStatOut]:
    stats = await LedgerRecorder().statistics(session, item_id=item_id, since=since, until=until)
    return {k: LedgerStatOut(**v) for k, v in stats.items()}


@router.post("/reconcile/items/{item_id}")
async def reconcile_item(item_id: int, session: AsyncSession = Depends(get_session)) -> Dict[str, Decimal]:
    svc = QuantityReconciler()
    async with session.begin():
        qty = await svc.recalculate(session, item_id=item_id)
        booked = await svc.recalculate_booked(session, item_id=item_id)
    return {"quantity": qty, "booked_quantity": booked}


@router.post("/reconcile/items", response_model=Dict[int, Decimal])
async def reconcile_all(session: AsyncSession = Depends(get_session)) -> Dict[int, Decimal]:
    async with session.begin():
        return await QuantityReconciler().recalculate_all(session)
