# stockledger/api/routers/master.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.db.session import get_session
from stockledger.schemas.master import ItemCreate, ItemOut, WarehouseCreate, WarehouseOut
from stockledger.services.master_data import MasterDataService

router = APIRouter(tags=["master"])


@router.post("/items", response_model=ItemOut, status_code=201)
async def create_item(body: ItemCreate, session: AsyncSession = Depends(get_session)) -> ItemOut:
    svc = MasterDataService()
    async with session.begin():
        item = await svc.create_item(session, name=body.name, unit=body.unit, unit_price=body.unit_price)
    return ItemOut.model_validate(item)


@router.get("/items/{item_id}", response_model=ItemOut)
async def get_item(item_id: int, session: AsyncSession = Depends(get_session)) -> ItemOut:
    item = await MasterDataService().get_item(session, item_id)
    return ItemOut.model_validate(item)


@router.post("/warehouses", response_model=WarehouseOut, status_code=201)
async def create_warehouse(
    body: WarehouseCreate, session: AsyncSession = Depends(get_session)
) -> WarehouseOut:
    async with session.begin():
        wh = await MasterDataService().create_warehouse(session, name=body.name, address=body.address)
    return WarehouseOut.model_validate(wh)


@router.get("/warehouses", response_model=List[WarehouseOut])
async def list_warehouses(session: AsyncSession = Depends(get_session)) -> List[WarehouseOut]:
    rows = await MasterDataService().list_warehouses(session)
    return [WarehouseOut.model_validate(w) for w in rows]
