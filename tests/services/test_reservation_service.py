# tests/services/test_reservation_service.py
from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import (
    days_from_today,
    ensure_wh_item,
    item_totals,
    ledger_count_by_type,
    reservations_of,
    seed_batch,
)

from stockledger.models.item import Item
from stockledger.models.stock_ledger import LedgerEntry
from stockledger.services.errors import InsufficientQuantity, InvalidQuantity, NotFound
from stockledger.services.reservation_service import ReservationService

pytestmark = pytest.mark.contract


@pytest.mark.asyncio
async def test_reserve_is_idempotent_per_job(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b1 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(3))
    b2 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(9))
    svc = ReservationService()

    first = await svc.reserve(session, item_id=item, quantity=7, job_reference_id="JOB-1")
    assert not first.already_reserved
    assert [(a.batch_id, a.quantity) for a in first.reserved_batches] == [
        (b1, Decimal("5")),
        (b2, Decimal("2")),
    ]
    assert first.booked_quantity == Decimal("7")

    second = await svc.reserve(session, item_id=item, quantity=7, job_reference_id="JOB-1")
    assert second.already_reserved
    assert second.newly_reserved == []
    assert second.events == []
    assert [(a.batch_id, a.quantity) for a in second.reserved_batches] == [
        (b1, Decimal("5")),
        (b2, Decimal("2")),
    ]

    assert (await item_totals(session, item))[1] == Decimal("7")
    assert (await ledger_count_by_type(session, item))["RESERVE"] == 2
    assert len(await reservations_of(session, job="JOB-1")) == 2


@pytest.mark.asyncio
async def test_reserve_more_tops_up_from_free_stock(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b1 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(3))
    b2 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(9))
    svc = ReservationService()

    await svc.reserve(session, item_id=item, quantity=4, job_reference_id="JOB-1")
    res = await svc.reserve(session, item_id=item, quantity=7, job_reference_id="JOB-1")

    assert not res.already_reserved
    assert [(a.batch_id, a.quantity) for a in res.newly_reserved] == [
        (b1, Decimal("1")),
        (b2, Decimal("2")),
    ]
    # the existing b1 row grows; b2 gets a new row
    assert await reservations_of(session, job="JOB-1") == [
        (b1, Decimal("5"), "active"),
        (b2, Decimal("2"), "active"),
    ]
    assert res.booked_quantity == Decimal("7")


@pytest.mark.asyncio
async def test_failed_reserve_leaves_nothing_behind(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)

    with pytest.raises(InsufficientQuantity) as ei:
        await ReservationService().reserve(session, item_id=item, quantity=12, job_reference_id="JOB-X")
    assert ei.value.shortfall == Decimal("2")

    assert await reservations_of(session, job="JOB-X") == []
    assert (await item_totals(session, item))[1] == 0
    assert "RESERVE" not in await ledger_count_by_type(session, item)


@pytest.mark.asyncio
async def test_reserve_requires_job_reference(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)
    with pytest.raises(InvalidQuantity):
        await ReservationService().reserve(session, item_id=item, quantity=1, job_reference_id="  ")


@pytest.mark.asyncio
async def test_cancel_is_total_for_job_and_item(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(3))
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(9))
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity=8, job_reference_id="JOB-1")
    await svc.reserve(session, item_id=item, quantity=1, job_reference_id="JOB-2")

    res = await svc.cancel(session, job_reference_id="JOB-1", item_id=item)

    assert res.released_quantity == Decimal("8")
    assert len(res.reservation_ids) == 2
    assert res.booked_quantity == Decimal("1")
    assert {s for _, _, s in await reservations_of(session, job="JOB-1")} == {"canceled"}
    assert [s for _, _, s in await reservations_of(session, job="JOB-2")] == ["active"]
    assert (await ledger_count_by_type(session, item))["UNRESERVE"] == 2

    again = await svc.cancel(session, job_reference_id="JOB-1", item_id=item)
    assert again.released_quantity == 0 and again.reservation_ids == [] and again.events == []


@pytest.mark.asyncio
async def test_cancel_clamps_booked_quantity_at_zero(session: AsyncSession, caplog):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=10)
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity=6, job_reference_id="JOB-1")

    # simulate drift left behind elsewhere
    await session.execute(update(Item).where(Item.id == item).values(booked_quantity=2))

    with caplog.at_level(logging.WARNING, logger="stockledger.reservations"):
        res = await svc.cancel(session, job_reference_id="JOB-1", item_id=item)

    assert res.booked_quantity == 0
    assert (await item_totals(session, item))[1] == 0
    assert any("clamped" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_complete_closes_holds_and_records_the_release(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=10)
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity=4, job_reference_id="JOB-C")

    res = await svc.complete(session, job_reference_id="JOB-C", item_id=item)

    assert res.released_quantity == Decimal("4")
    assert res.booked_quantity == 0
    assert [s for _, _, s in await reservations_of(session, job="JOB-C")] == ["completed"]
    assert (await ledger_count_by_type(session, item))["UNRESERVE"] == 1
    details = (
        await session.execute(select(LedgerEntry.details).where(LedgerEntry.type == "UNRESERVE"))
    ).scalar_one()
    assert details["reason"] == "complete"
    assert details["status"] == "completed"
    assert [e.name for e in res.events] == ["reservation.completed"]


@pytest.mark.asyncio
async def test_cancel_job_releases_every_item(session: AsyncSession):
    i1, (wh,) = await ensure_wh_item(session, item_name="UT-A")
    i2, _ = await ensure_wh_item(session, item_name="UT-B", warehouses=())
    await seed_batch(session, item_id=i1, warehouse_id=wh, qty=10)
    await seed_batch(session, item_id=i2, warehouse_id=wh, qty=10)
    svc = ReservationService()
    await svc.reserve(session, item_id=i1, quantity=2, job_reference_id="JOB-ALL")
    await svc.reserve(session, item_id=i2, quantity=3, job_reference_id="JOB-ALL")

    results = await svc.cancel_job(session, job_reference_id="JOB-ALL")

    assert [(r.item_id, r.released_quantity) for r in results] == [(i1, Decimal("2")), (i2, Decimal("3"))]
    assert (await item_totals(session, i1))[1] == 0
    assert (await item_totals(session, i2))[1] == 0


@pytest.mark.asyncio
async def test_cleanup_micro_reservations(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=10)
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity="0.0004", job_reference_id="JOB-DUST")
    await svc.reserve(session, item_id=item, quantity=2, job_reference_id="JOB-REAL")

    released = await svc.cleanup_micro_reservations(session)

    assert released == {item: Decimal("0.0004")}
    assert [s for _, _, s in await reservations_of(session, job="JOB-DUST")] == ["canceled"]
    assert [s for _, _, s in await reservations_of(session, job="JOB-REAL")] == ["active"]
    assert (await item_totals(session, item))[1] == Decimal("2")


@pytest.mark.asyncio
async def test_list_for_job_and_recalculate_booked(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=10)
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity=3, job_reference_id="JOB-L")

    rows = await svc.list_for_job(session, job_reference_id="JOB-L", status="active")
    assert [(r.item_id, Decimal(str(r.quantity))) for r in rows] == [(item, Decimal("3"))]

    await session.execute(update(Item).where(Item.id == item).values(booked_quantity=99))
    assert await svc.recalculate_booked(session, item_id=item) == Decimal("3")
    assert (await item_totals(session, item))[1] == Decimal("3")


@pytest.mark.asyncio
async def test_holds_listed_per_batch_and_grouped_per_job(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b1 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(3))
    b2 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=10, expiry=days_from_today(30))
    svc = ReservationService()
    await svc.reserve(session, item_id=item, quantity=3, job_reference_id="JOB-A")
    await svc.reserve(session, item_id=item, quantity=4, job_reference_id="JOB-B")
    await svc.reserve(session, item_id=item, quantity=1, job_reference_id="JOB-C")
    await svc.cancel(session, job_reference_id="JOB-C", item_id=item)

    on_b1 = await svc.list_for_batch(session, batch_id=b1)
    assert [(r.job_reference_id, Decimal(str(r.quantity))) for r in on_b1] == [
        ("JOB-A", Decimal("3")),
        ("JOB-B", Decimal("2")),
    ]

    groups = await svc.list_for_item(session, item_id=item)
    assert [g.job_reference_id for g in groups] == ["JOB-A", "JOB-B"]
    assert groups[0].total_quantity == Decimal("3")
    assert groups[1].total_quantity == Decimal("4")
    assert [(a.batch_id, a.quantity) for a in groups[1].batches] == [(b1, Decimal("2")), (b2, Decimal("2"))]
    assert len(groups[1].reservation_ids) == 2


@pytest.mark.asyncio
async def test_hold_listings_reject_unknown_ids(session: AsyncSession):
    svc = ReservationService()
    with pytest.raises(NotFound):
        await svc.list_for_batch(session, batch_id=4040)
    with pytest.raises(NotFound):
        await svc.list_for_item(session, item_id=4040)
