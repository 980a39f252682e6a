# stockledger/schemas/batch.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict

from pydantic import Field, field_validator

from stockledger.models.enums import AllocationPolicy
from stockledger.schemas._base import PositiveQty, _Base


class BatchCreate(_Base):
    """Operator batch entry; booked as a receive (RECEIVE entry, same lot top-up rule)."""

    item_id: int
    warehouse_id: int | None = None
    quantity: PositiveQty
    lot_number: Annotated[str | None, Field(default=None, max_length=64)] = None
    batch_number: Annotated[str | None, Field(default=None, max_length=64)] = None
    unit_price: Annotated[Decimal, Field(ge=0)] = Decimal("0")
    expiry_date: date | None = None
    received_date: datetime | None = None
    source_details: Dict[str, Any] | None = None
    certificate_file_name: str | None = None
    certificate_url: str | None = None
    notes: str | None = None
    reference: str | None = None
    actor_id: str | None = None

    @field_validator("lot_number", "batch_number", mode="before")
    @classmethod
    def _trim(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    model_config = _Base.model_config | {
        "json_schema_extra": {
            "example": {
                "item_id": 1,
                "warehouse_id": 1,
                "quantity": "100",
                "lot_number": "LOT-20250101-0001",
                "expiry_date": "2026-04-01",
            }
        }
    }


class BatchOut(_Base):
    id: int
    item_id: int
    warehouse_id: int
    batch_number: str
    lot_number: str
    quantity: Decimal
    initial_quantity: Decimal
    unit_price: Decimal
    expiry_date: date | None = None
    received_date: datetime
    source_details: Dict[str, Any] | None = None
    certificate_file_name: str | None = None
    certificate_url: str | None = None
    notes: str | None = None
    version: int


class BatchAdjustIn(_Base):
    delta: Decimal
    reason: str | None = None
    actor_id: str | None = None


class BatchAdjustOut(_Base):
    batch: BatchOut
    previous_quantity: Decimal
    ledger_entry_id: int
    item_quantity: Decimal


class BatchAllocationOut(_Base):
    batch_id: int
    quantity: Decimal
    warehouse_id: int | None = None
    lot_number: str | None = None
    expiry_date: date | None = None


class AllocatePreviewIn(_Base):
    item_id: int
    quantity: PositiveQty
    policy: AllocationPolicy = AllocationPolicy.FEFO
    warehouse_id: int | None = None
    pinned_batch_id: int | None = None
    job_reference_id: str | None = None
    allow_expired: bool = True


class DomainEventOut(_Base):
    name: str
    item_id: int
    payload: Dict[str, Any] = {}
