# tests/services/test_allocator.py
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.inventory import (
    days_from_today,
    ensure_wh_item,
    received_at,
    reservations_of,
    seed_batch,
)

from stockledger.models.enums import AllocationPolicy
from stockledger.services.allocator import BatchAllocator
from stockledger.services.errors import (
    InsufficientBatchQuantity,
    InsufficientQuantity,
    InvalidQuantity,
    NotFound,
    WrongWarehouse,
)
from stockledger.services.reservation_service import ReservationService

pytestmark = pytest.mark.contract


def _plan(allocs):
    return [(a.batch_id, a.quantity) for a in allocs]


@pytest.mark.asyncio
async def test_fefo_dated_batches_first_undated_last(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b1 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=date(2024, 1, 1))
    b2 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=date(2024, 3, 1))
    b3 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=8, policy="fefo")
    assert _plan(plan) == [(b1, Decimal("5")), (b2, Decimal("3"))]

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=15)
    assert [a.batch_id for a in plan] == [b1, b2, b3]


@pytest.mark.asyncio
async def test_fefo_same_expiry_breaks_tie_on_received_date(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    exp = days_from_today(20)
    late = await seed_batch(session, item_id=item, warehouse_id=wh, qty=4, expiry=exp, received=received_at(1))
    early = await seed_batch(session, item_id=item, warehouse_id=wh, qty=4, expiry=exp, received=received_at(9))

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=5, policy=AllocationPolicy.FEFO)
    assert _plan(plan) == [(early, Decimal("4")), (late, Decimal("1"))]


@pytest.mark.asyncio
async def test_fifo_ignores_expiry(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    newest = await seed_batch(
        session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(2), received=received_at(1)
    )
    oldest = await seed_batch(
        session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(90), received=received_at(30)
    )

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=7, policy="fifo")
    assert _plan(plan) == [(oldest, Decimal("5")), (newest, Decimal("2"))]


@pytest.mark.asyncio
async def test_allocation_is_scoped_to_warehouse(session: AsyncSession):
    item, (wa, wb) = await ensure_wh_item(session, warehouses=("WH-A", "WH-B"))
    await seed_batch(session, item_id=item, warehouse_id=wa, qty=3, expiry=days_from_today(1))
    in_b = await seed_batch(session, item_id=item, warehouse_id=wb, qty=6, expiry=days_from_today(50))

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=4, warehouse_id=wb)
    assert _plan(plan) == [(in_b, Decimal("4"))]


@pytest.mark.asyncio
async def test_shortage_reports_shortfall_and_returns_nothing(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=2)

    with pytest.raises(InsufficientQuantity) as ei:
        await BatchAllocator().allocate(session, item_id=item, quantity=10, warehouse_id=wh)
    err = ei.value
    assert not isinstance(err, InsufficientBatchQuantity)
    assert err.shortfall == Decimal("3")
    assert err.details[0]["short_qty"] == "3.0000"


@pytest.mark.asyncio
async def test_allow_expired_false_skips_expired_batches(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(-3))
    fresh = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(3))

    plan = await BatchAllocator().allocate(session, item_id=item, quantity=2, allow_expired=False)
    assert _plan(plan) == [(fresh, Decimal("2"))]

    with pytest.raises(InsufficientQuantity):
        await BatchAllocator().allocate(session, item_id=item, quantity=6, allow_expired=False)


@pytest.mark.asyncio
async def test_other_jobs_reservations_reduce_availability(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b1 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(5))
    b2 = await seed_batch(session, item_id=item, warehouse_id=wh, qty=5, expiry=days_from_today(10))
    await ReservationService().reserve(session, item_id=item, quantity=4, job_reference_id="JOB-1")

    alloc = BatchAllocator()
    # JOB-1 holds 4 of b1: other callers only see 1 there
    assert _plan(await alloc.allocate(session, item_id=item, quantity=3)) == [
        (b1, Decimal("1")),
        (b2, Decimal("2")),
    ]
    # the holder itself still sees its own stock
    assert _plan(await alloc.allocate(session, item_id=item, quantity=3, job_reference_id="JOB-1")) == [
        (b1, Decimal("3"))
    ]


@pytest.mark.asyncio
async def test_pinned_batch_shortfall_creates_no_reservation(session: AsyncSession):
    item, (wh,) = await ensure_wh_item(session)
    b = await seed_batch(session, item_id=item, warehouse_id=wh, qty=10)
    await ReservationService().reserve(
        session, item_id=item, quantity=5, job_reference_id="JOB-OTHER", pinned_batch_id=b
    )

    with pytest.raises(InsufficientBatchQuantity) as ei:
        await ReservationService().reserve(
            session, item_id=item, quantity=8, job_reference_id="JOB-PIN", pinned_batch_id=b
        )
    assert ei.value.shortfall == Decimal("3")
    assert ei.value.batch_id == b
    assert await reservations_of(session, job="JOB-PIN") == []


@pytest.mark.asyncio
async def test_pinned_batch_must_match_item_and_warehouse(session: AsyncSession):
    item, (wa, wb) = await ensure_wh_item(session, warehouses=("WH-A", "WH-B"))
    other, _ = await ensure_wh_item(session, item_name="UT-ITEM-2", warehouses=())
    b = await seed_batch(session, item_id=item, warehouse_id=wa, qty=10)

    alloc = BatchAllocator()
    with pytest.raises(WrongWarehouse):
        await alloc.allocate(session, item_id=item, quantity=1, warehouse_id=wb, pinned_batch_id=b)
    with pytest.raises(NotFound):
        await alloc.allocate(session, item_id=other, quantity=1, pinned_batch_id=b)
    with pytest.raises(NotFound):
        await alloc.allocate(session, item_id=item, quantity=1, pinned_batch_id=999999)

    plan = await alloc.allocate(session, item_id=item, quantity=10, warehouse_id=wa, pinned_batch_id=b)
    assert _plan(plan) == [(b, Decimal("10"))]


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", [0, -1, "abc", None, True])
async def test_invalid_quantity_is_rejected(session: AsyncSession, bad):
    item, (wh,) = await ensure_wh_item(session)
    await seed_batch(session, item_id=item, warehouse_id=wh, qty=5)
    with pytest.raises(InvalidQuantity):
        await BatchAllocator().allocate(session, item_id=item, quantity=bad)
