# stockledger/schemas/stock.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import Field

from stockledger.models.enums import AllocationPolicy
from stockledger.schemas._base import PositiveQty, _Base
from stockledger.schemas.batch import BatchAllocationOut, BatchOut, DomainEventOut


class ReceiveIn(_Base):
    item_id: int
    quantity: PositiveQty
    warehouse_id: int | None = None
    lot_number: str | None = Field(default=None, max_length=64)
    batch_number: str | None = Field(default=None, max_length=64)
    expiry_date: date | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    received_date: datetime | None = None
    source_details: Dict[str, Any] | None = None
    certificate_file_name: str | None = None
    certificate_url: str | None = None
    notes: str | None = None
    reference: str | None = None
    actor_id: str | None = None


class ReceiveOut(_Base):
    batch: BatchOut
    created: bool
    ledger_entry_id: int
    item_quantity: Decimal
    events: List[DomainEventOut] = []


class IssueIn(_Base):
    item_id: int
    quantity: PositiveQty
    warehouse_id: int | None = None
    policy: AllocationPolicy = AllocationPolicy.FEFO
    pinned_batch_id: int | None = None
    job_reference_id: str | None = None
    reference: str | None = None
    actor_id: str | None = None


class IssueOut(_Base):
    item_id: int
    quantity: Decimal
    issued: List[BatchAllocationOut]
    ledger_entry_ids: List[int]
    item_quantity: Decimal
    events: List[DomainEventOut] = []


class TransferIn(_Base):
    batch_id: int
    source_warehouse_id: int
    target_warehouse_id: int
    quantity: PositiveQty
    reference: str | None = None
    actor_id: str | None = None


class TransferOut(_Base):
    item_id: int
    source_batch_id: int
    target_batch_id: int
    quantity: Decimal
    merged: bool
    source_deleted: bool
    moved_reservation_ids: List[int]
    item_quantity: Decimal
    events: List[DomainEventOut] = []
