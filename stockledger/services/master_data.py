# stockledger/services/master_data.py
from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.tx import atomic
from stockledger.models.item import Item
from stockledger.models.warehouse import Warehouse
from stockledger.services.errors import DuplicateName, NotFound
from stockledger.services.reconciler import load_item
from stockledger.services.utils.quantities import ZERO, to_qty

log = logging.getLogger("stockledger.master")


class MasterDataService:
    """Items and warehouses, the minimum the stock tables hang off."""

    async def create_item(
        self, session: AsyncSession, *, name: str, unit: str = "pcs", unit_price: Any = 0
    ) -> Item:
        name = name.strip()
        async with atomic(session):
            dup = (await session.execute(select(Item.id).where(Item.name == name))).scalar_one_or_none()
            if dup is not None:
                raise DuplicateName(f"item {name!r} already exists", context={"item_id": int(dup)})
            item = Item(
                name=name,
                unit=unit.strip() or "pcs",
                unit_price=to_qty(unit_price or 0, field="unit_price"),
                quantity=ZERO,
                booked_quantity=ZERO,
                version=1,
            )
            session.add(item)
            await session.flush()
        await session.refresh(item)
        log.info("item created id=%s name=%s", item.id, item.name)
        return item

    async def get_item(self, session: AsyncSession, item_id: int) -> Item:
        return await load_item(session, item_id)

    async def create_warehouse(
        self, session: AsyncSession, *, name: str, address: Optional[str] = None
    ) -> Warehouse:
        name = name.strip()
        async with atomic(session):
            dup = (
                await session.execute(select(Warehouse.id).where(Warehouse.name == name))
            ).scalar_one_or_none()
            if dup is not None:
                raise DuplicateName(f"warehouse {name!r} already exists", context={"warehouse_id": int(dup)})
            wh = Warehouse(name=name, address=address)
            session.add(wh)
            await session.flush()
        log.info("warehouse created id=%s name=%s", wh.id, wh.name)
        return wh

    async def get_warehouse(self, session: AsyncSession, warehouse_id: int) -> Warehouse:
        wh = await session.get(Warehouse, int(warehouse_id))
        if wh is None:
            raise NotFound(f"warehouse {warehouse_id} not found", context={"warehouse_id": int(warehouse_id)})
        return wh

    async def list_warehouses(self, session: AsyncSession) -> List[Warehouse]:
        return list((await session.execute(select(Warehouse).order_by(Warehouse.id))).scalars().all())
