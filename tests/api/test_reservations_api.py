# tests/api/test_reservations_api.py
from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from tests.api._helpers import seed_via_api

pytestmark = pytest.mark.asyncio


async def test_reserve_cancel_flow(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)
    await client.post("/stock/receive", json={"item_id": item, "quantity": 10, "warehouse_id": wh})

    r = await client.post("/reservations", json={"item_id": item, "quantity": 6, "job_reference_id": "JOB-API"})
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["booked_quantity"]) == Decimal("6")

    r = await client.post("/reservations", json={"item_id": item, "quantity": 6, "job_reference_id": "JOB-API"})
    assert r.json()["already_reserved"] is True

    r = await client.get("/reservations", params={"job_reference_id": "JOB-API", "status": "active"})
    assert len(r.json()) == 1

    r = await client.post("/allocate/preview", json={"item_id": item, "quantity": 5})
    assert r.status_code == 409
    assert r.json()["error_code"] == "insufficient_quantity"

    r = await client.post("/reservations/cancel", json={"item_id": item, "job_reference_id": "JOB-API"})
    assert Decimal(r.json()["released_quantity"]) == Decimal("6")

    r = await client.get(f"/items/{item}")
    assert Decimal(r.json()["booked_quantity"]) == 0


async def test_delete_reserved_batch_is_blocked(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)
    r = await client.post("/stock/receive", json={"item_id": item, "quantity": 3, "warehouse_id": wh})
    batch_id = r.json()["batch"]["id"]
    await client.post(
        "/reservations",
        json={"item_id": item, "quantity": 1, "job_reference_id": "JOB-DEL", "pinned_batch_id": batch_id},
    )

    r = await client.delete(f"/batches/{batch_id}")
    assert r.status_code == 409
    assert r.json()["error_code"] == "batch_in_use"

    r = await client.post("/reservations/cancel-job", json={"job_reference_id": "JOB-DEL"})
    assert [x["item_id"] for x in r.json()] == [item]

    r = await client.delete(f"/batches/{batch_id}")
    assert r.status_code == 200
    assert r.json()[0]["name"] == "batch.deleted"


async def test_reconcile_endpoints(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)
    await client.post("/stock/receive", json={"item_id": item, "quantity": 5, "warehouse_id": wh})

    r = await client.post(f"/reconcile/items/{item}")
    assert Decimal(r.json()["quantity"]) == Decimal("5")

    r = await client.post("/reconcile/items")
    assert Decimal(r.json()[str(item)]) == Decimal("5")


async def test_holds_by_batch_and_by_item(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)
    r = await client.post("/stock/receive", json={"item_id": item, "quantity": 10, "warehouse_id": wh})
    batch_id = r.json()["batch"]["id"]
    for job, qty in (("JOB-X", 2), ("JOB-Y", 5)):
        r = await client.post("/reservations", json={"item_id": item, "quantity": qty, "job_reference_id": job})
        assert r.status_code == 200, r.text

    r = await client.get(f"/reservations/by-batch/{batch_id}")
    assert r.status_code == 200
    assert [(x["job_reference_id"], Decimal(x["quantity"])) for x in r.json()] == [
        ("JOB-X", Decimal("2")),
        ("JOB-Y", Decimal("5")),
    ]

    r = await client.get(f"/reservations/by-item/{item}")
    assert r.status_code == 200
    groups = r.json()
    assert [(g["job_reference_id"], Decimal(g["total_quantity"])) for g in groups] == [
        ("JOB-X", Decimal("2")),
        ("JOB-Y", Decimal("5")),
    ]
    assert groups[1]["batches"][0]["batch_id"] == batch_id

    r = await client.get("/reservations/by-batch/999999")
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_found"
