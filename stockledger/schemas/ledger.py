# stockledger/schemas/ledger.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from stockledger.schemas._base import _Base


class LedgerEntryOut(_Base):
    id: int
    item_id: int
    batch_id: int | None = None
    warehouse_id: int | None = None
    target_warehouse_id: int | None = None
    type: str
    quantity: Decimal
    previous_quantity: Decimal | None = None
    reference: str | None = None
    details: Dict[str, Any] | None = None
    actor_id: str | None = None
    occurred_at: datetime


class LedgerStatOut(_Base):
    count: int
    quantity: Decimal
