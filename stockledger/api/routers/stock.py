# stockledger/api/routers/stock.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.db.session import get_session
from stockledger.schemas.stock import (
    IssueIn,
    IssueOut,
    ReceiveIn,
    ReceiveOut,
    TransferIn,
    TransferOut,
)
from stockledger.services.stock_service import StockService
from stockledger.services.transfer_service import TransferService

router = APIRouter(prefix="/stock", tags=["stock"])


@router.post("/receive", response_model=ReceiveOut, status_code=201)
async def receive(body: ReceiveIn, session: AsyncSession = Depends(get_session)) -> ReceiveOut:
    async with session.begin():
        res = await StockService().receive(session, **body.model_dump())
    return ReceiveOut.model_validate(res)


@router.post("/issue", response_model=IssueOut)
async def issue(body: IssueIn, session: AsyncSession = Depends(get_session)) -> IssueOut:
    async with session.begin():
        res = await StockService().issue(session, **body.model_dump())
    return IssueOut.model_validate(res)


@router.post("/transfer", response_model=TransferOut)
async def transfer(body: TransferIn, session: AsyncSession = Depends(get_session)) -> TransferOut:
    async with session.begin():
        res = await TransferService().transfer(session, **body.model_dump())
    return TransferOut.model_validate(res)
