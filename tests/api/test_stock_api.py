# tests/api/test_stock_api.py
from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from tests.api._helpers import seed_via_api

pytestmark = pytest.mark.asyncio


async def test_receive_issue_and_history(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)

    r = await client.post(
        "/stock/receive",
        json={
            "item_id": item,
            "quantity": "10",
            "warehouse_id": wh,
            "expiry_date": "2030-01-01",
            "source_details": {"type": "production", "production_order_id": "MO-1"},
        },
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["created"] is True
    assert Decimal(body["item_quantity"]) == Decimal("10")
    batch_id = body["batch"]["id"]

    r = await client.post("/stock/issue", json={"item_id": item, "quantity": 4, "warehouse_id": wh})
    assert r.status_code == 200, r.text
    assert [(a["batch_id"], Decimal(a["quantity"])) for a in r.json()["issued"]] == [(batch_id, Decimal("4"))]

    r = await client.get(f"/items/{item}")
    assert Decimal(r.json()["quantity"]) == Decimal("6")

    r = await client.get(f"/ledger/items/{item}")
    assert [e["type"] for e in r.json()] == ["ISSUE", "RECEIVE"]

    r = await client.get("/ledger/statistics", params={"item_id": item})
    assert r.json()["RECEIVE"]["count"] == 1


async def test_issue_shortage_is_a_problem_with_shortfall(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)
    await client.post("/stock/receive", json={"item_id": item, "quantity": 2, "warehouse_id": wh})

    r = await client.post("/stock/issue", json={"item_id": item, "quantity": 5, "warehouse_id": wh})

    assert r.status_code == 409
    p = r.json()
    assert p["error_code"] == "insufficient_quantity"
    assert p["http_status"] == 409
    assert p["context"]["shortfall"] == "3.0000"
    assert p["details"][0]["type"] == "shortage"
    assert p["trace_id"]


async def test_missing_warehouse_and_validation_errors(client: httpx.AsyncClient):
    item, _ = await seed_via_api(client)

    r = await client.post("/stock/receive", json={"item_id": item, "quantity": 1})
    assert r.status_code == 422
    assert r.json()["error_code"] == "missing_warehouse"

    r = await client.post("/stock/receive", json={"item_id": item, "quantity": 0, "warehouse_id": 1})
    assert r.status_code == 422
    assert r.json()["error_code"] == "request_validation_error"
    assert r.json()["details"][0]["type"] == "validation"


async def test_transfer_endpoint(client: httpx.AsyncClient):
    item, (wa, wb) = await seed_via_api(client, warehouses=("WH-A", "WH-B"))
    r = await client.post(
        "/stock/receive", json={"item_id": item, "quantity": 8, "warehouse_id": wa, "lot_number": "L-API"}
    )
    src = r.json()["batch"]["id"]

    r = await client.post(
        "/stock/transfer",
        json={"batch_id": src, "source_warehouse_id": wa, "target_warehouse_id": wb, "quantity": 8},
    )
    assert r.status_code == 200, r.text
    assert r.json()["source_deleted"] is True

    r = await client.get(f"/batches/{src}")
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_found"

    r = await client.get("/batches/by-lot/L-API")
    assert [(b["warehouse_id"], Decimal(b["quantity"])) for b in r.json()] == [(wb, Decimal("8"))]


async def test_duplicate_item_name_conflicts(client: httpx.AsyncClient):
    await seed_via_api(client, item="DUP", warehouses=())
    r = await client.post("/items", json={"name": "DUP"})
    assert r.status_code == 409
    assert r.json()["error_code"] == "duplicate_name"


async def test_healthz_and_metrics(client: httpx.AsyncClient):
    r = await client.get("/healthz")
    assert r.json() == {"ok": True}
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "inventory_operations_total" in r.text


async def test_batch_entry_is_booked_as_receive(client: httpx.AsyncClient):
    item, (wh,) = await seed_via_api(client)

    r = await client.post(
        "/batches", json={"item_id": item, "warehouse_id": wh, "quantity": "7", "lot_number": "LOT-OP-1"}
    )
    assert r.status_code == 201, r.text
    assert r.json()["lot_number"] == "LOT-OP-1"

    r = await client.get(f"/items/{item}")
    assert Decimal(r.json()["quantity"]) == Decimal("7")

    r = await client.get(f"/ledger/items/{item}")
    entries = r.json()
    assert [e["type"] for e in entries] == ["RECEIVE"]
    assert Decimal(entries[0]["quantity"]) == Decimal("7")

    r = await client.post("/batches", json={"item_id": item, "warehouse_id": wh, "quantity": "0"})
    assert r.status_code == 422
