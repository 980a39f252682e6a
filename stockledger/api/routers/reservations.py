# stockledger/api/routers/reservations.py
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.db.session import get_session
from stockledger.models.enums import ReservationStatus
from stockledger.schemas.reservation import (
    CancelJobIn,
    JobHoldsOut,
    MicroCleanupIn,
    ReleaseIn,
    ReleaseOut,
    ReservationOut,
    ReserveIn,
    ReserveOut,
)
from stockledger.services.reservation_service import ReservationService

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReserveOut)
async def reserve(body: ReserveIn, session: AsyncSession = Depends(get_session)) -> ReserveOut:
    async with session.begin():
        res = await ReservationService().reserve(session, **body.model_dump())
    return ReserveOut.model_validate(res)


@router.post("/cancel", response_model=ReleaseOut)
async def cancel(body: ReleaseIn, session: AsyncSession = Depends(get_session)) -> ReleaseOut:
    async with session.begin():
        res = await ReservationService().cancel(session, **body.model_dump())
    return ReleaseOut.model_validate(res)


@router.post("/complete", response_model=ReleaseOut)
async def complete(body: ReleaseIn, session: AsyncSession = Depends(get_session)) -> ReleaseOut:
    async with session.begin():
        res = await ReservationService().complete(session, **body.model_dump())
    return ReleaseOut.model_validate(res)


@router.post("/cancel-job", response_model=List[ReleaseOut])
async def cancel_job(body: CancelJobIn, session: AsyncSession = Depends(get_session)) -> List[ReleaseOut]:
    async with session.begin():
        results = await ReservationService().cancel_job(session, **body.model_dump())
    return [ReleaseOut.model_validate(r) for r in results]


@router.post("/cleanup-micro", response_model=Dict[int, Decimal])
async def cleanup_micro(
    body: MicroCleanupIn, session: AsyncSession = Depends(get_session)
) -> Dict[int, Decimal]:
    async with session.begin():
        return await ReservationService().cleanup_micro_reservations(session, **body.model_dump())


@router.get("", response_model=List[ReservationOut])
async def list_for_job(
    job_reference_id: str,
    item_id: int | None = None,
    status: ReservationStatus | None = None,
    session: AsyncSession = Depends(get_session),
) -> List[ReservationOut]:
    rows = await ReservationService().list_for_job(
        session, job_reference_id=job_reference_id, item_id=item_id, status=status
    )
    return [ReservationOut.model_validate(r) for r in rows]


@router.get("/by-batch/{batch_id}", response_model=List[ReservationOut])
async def list_for_batch(batch_id: int, session: AsyncSession = Depends(get_session)) -> List[ReservationOut]:
    rows = await ReservationService().list_for_batch(session, batch_id=batch_id)
    return [ReservationOut.model_validate(r) for r in rows]


@router.get("/by-item/{item_id}", response_model=List[JobHoldsOut])
async def list_for_item(item_id: int, session: AsyncSession = Depends(get_session)) -> List[JobHoldsOut]:
    groups = await ReservationService().list_for_item(session, item_id=item_id)
    return [JobHoldsOut.model_validate(g) for g in groups]
