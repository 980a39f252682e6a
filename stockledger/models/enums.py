# stockledger/models/enums.py
from __future__ import annotations

from enum import Enum


class LedgerType(str, Enum):
    """
    Ledger entry types (stock_ledger.type):

    - RECEIVE       goods in (purchase / production / other)
    - ISSUE         physical consumption, one entry per batch touched
    - TRANSFER      batch moved between warehouses
    - RESERVE       soft hold booked against a job
    - UNRESERVE     hold canceled
    - ADJUST        manual correction of a batch quantity
    - DELETE_BATCH  batch removed (full transfer or operator delete)
    """

    RECEIVE = "RECEIVE"
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"
    RESERVE = "RESERVE"
    UNRESERVE = "UNRESERVE"
    ADJUST = "ADJUST"
    DELETE_BATCH = "DELETE_BATCH"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


class AllocationPolicy(str, Enum):
    """FEFO: earliest expiry first (undated last). FIFO: earliest received first."""

    FEFO = "fefo"
    FIFO = "fifo"


__all__ = ["AllocationPolicy", "LedgerType", "ReservationStatus"]
