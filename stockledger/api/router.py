# stockledger/api/router.py
from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from stockledger.api.routers.batches import allocate_router
from stockledger.api.routers.batches import router as batches_router
from stockledger.api.routers.ledger import router as ledger_router
from stockledger.api.routers.master import router as master_router
from stockledger.api.routers.reservations import router as reservations_router
from stockledger.api.routers.stock import router as stock_router

api_router = APIRouter()
api_router.include_router(master_router)
api_router.include_router(batches_router)
api_router.include_router(allocate_router)
api_router.include_router(stock_router)
api_router.include_router(reservations_router)
api_router.include_router(ledger_router)


@api_router.get("/healthz", tags=["meta"])
async def healthz() -> dict:
    return {"ok": True}


@api_router.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
