# stockledger/services/inventory_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from stockledger.models.batch import Batch


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    quantity: Decimal
    warehouse_id: Optional[int] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    # batch version the plan was made against
    version: Optional[int] = None


@dataclass(frozen=True)
class DomainEvent:
    """
    Returned (never broadcast) by every mutating operation; the caller decides
    who consumes it (notifications, UI refresh, ...).
    """

    name: str
    item_id: int
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReceiveResult:
    batch: Batch
    created: bool
    ledger_entry_id: int
    item_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class IssueResult:
    item_id: int
    quantity: Decimal
    issued: List[BatchAllocation]
    ledger_entry_ids: List[int]
    item_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class AdjustResult:
    batch: Batch
    previous_quantity: Decimal
    ledger_entry_id: int
    item_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class ReserveResult:
    item_id: int
    job_reference_id: str
    reserved_batches: List[BatchAllocation]
    newly_reserved: List[BatchAllocation]
    already_reserved: bool
    booked_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class CancelResult:
    item_id: int
    job_reference_id: str
    released_quantity: Decimal
    reservation_ids: List[int]
    booked_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class TransferResult:
    item_id: int
    source_batch_id: int
    target_batch_id: int
    quantity: Decimal
    merged: bool
    source_deleted: bool
    moved_reservation_ids: List[int]
    item_quantity: Decimal
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class JobHolds:
    """Active holds of one job on one item, summed per batch."""

    job_reference_id: str
    item_id: int
    total_quantity: Decimal
    batches: List[BatchAllocation]
    reservation_ids: List[int]
