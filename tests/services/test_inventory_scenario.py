# tests/services/test_inventory_scenario.py
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import ensure_wh_item, item_totals, sum_batches

from stockledger.models.stock_ledger import LedgerEntry
from stockledger.services.reservation_service import ReservationService
from stockledger.services.stock_service import StockService

pytestmark = pytest.mark.contract


@pytest.mark.asyncio
async def test_receive_reserve_issue_cancel_roundtrip(session: AsyncSession):
    """
    receive 100 (expiry 2025-01-01) -> reserve 30 for J1 -> issue 20 FEFO -> cancel J1

    expected: quantity 80, booked 0, exactly one RECEIVE(100) / RESERVE(30) /
    ISSUE(20) / UNRESERVE(30) in the ledger
    """
    item, (wh,) = await ensure_wh_item(session, item_name="X", warehouses=("A",))
    stock = StockService()
    reservations = ReservationService()

    await stock.receive(session, item_id=item, quantity=100, warehouse_id=wh, expiry_date=date(2025, 1, 1))
    await reservations.reserve(session, item_id=item, quantity=30, job_reference_id="J1")
    await stock.issue(session, item_id=item, quantity=20, warehouse_id=wh, policy="fefo")
    await reservations.cancel(session, job_reference_id="J1", item_id=item)

    assert await item_totals(session, item) == (Decimal("80"), Decimal("0"))
    assert await sum_batches(session, item) == Decimal("80")

    rows = (
        await session.execute(
            select(LedgerEntry.type, LedgerEntry.quantity)
            .where(LedgerEntry.item_id == item)
            .order_by(LedgerEntry.occurred_at.asc(), LedgerEntry.id.asc())
        )
    ).all()
    assert [(t, Decimal(str(q))) for t, q in rows] == [
        ("RECEIVE", Decimal("100")),
        ("RESERVE", Decimal("30")),
        ("ISSUE", Decimal("20")),
        ("UNRESERVE", Decimal("30")),
    ]
