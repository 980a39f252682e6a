# tests/api/_helpers.py
from __future__ import annotations

from typing import Tuple

import httpx


async def seed_via_api(client: httpx.AsyncClient, *, item: str = "API-ITEM", warehouses=("WH-A",)) -> Tuple[int, list]:
    r = await client.post("/items", json={"name": item, "unit": "pcs"})
    assert r.status_code == 201, r.text
    item_id = r.json()["id"]
    wh_ids = []
    for name in warehouses:
        r = await client.post("/warehouses", json={"name": name})
        assert r.status_code == 201, r.text
        wh_ids.append(r.json()["id"])
    return item_id, wh_ids
