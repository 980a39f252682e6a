# stockledger/schemas/reservation.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List

from pydantic import Field

from stockledger.models.enums import AllocationPolicy
from stockledger.schemas._base import PositiveQty, _Base
from stockledger.schemas.batch import BatchAllocationOut, DomainEventOut

JobRef = Annotated[str, Field(min_length=1, max_length=128)]


class ReserveIn(_Base):
    item_id: int
    quantity: PositiveQty
    job_reference_id: JobRef
    policy: AllocationPolicy = AllocationPolicy.FEFO
    pinned_batch_id: int | None = None
    warehouse_id: int | None = None
    actor_id: str | None = None


class ReserveOut(_Base):
    item_id: int
    job_reference_id: str
    reserved_batches: List[BatchAllocationOut]
    newly_reserved: List[BatchAllocationOut]
    already_reserved: bool
    booked_quantity: Decimal
    events: List[DomainEventOut] = []


class ReleaseIn(_Base):
    job_reference_id: JobRef
    item_id: int
    actor_id: str | None = None


class CancelJobIn(_Base):
    job_reference_id: JobRef
    actor_id: str | None = None


class ReleaseOut(_Base):
    item_id: int
    job_reference_id: str
    released_quantity: Decimal
    reservation_ids: List[int]
    booked_quantity: Decimal
    events: List[DomainEventOut] = []


class MicroCleanupIn(_Base):
    threshold: Decimal | None = Field(default=None, gt=0)
    actor_id: str | None = None


class ReservationOut(_Base):
    id: int
    item_id: int
    batch_id: int | None = None
    job_reference_id: str
    quantity: Decimal
    status: str
    created_at: datetime | None = None


class JobHoldsOut(_Base):
    job_reference_id: str
    item_id: int
    total_quantity: Decimal
    batches: List[BatchAllocationOut]
    reservation_ids: List[int]
