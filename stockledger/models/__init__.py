# stockledger/models/__init__.py
from stockledger.models.batch import Batch
from stockledger.models.counter import Counter
from stockledger.models.enums import AllocationPolicy, LedgerType, ReservationStatus
from stockledger.models.item import Item
from stockledger.models.reservation import Reservation
from stockledger.models.stock_ledger import LedgerEntry
from stockledger.models.warehouse import Warehouse

__all__ = [
    "AllocationPolicy",
    "Batch",
    "Counter",
    "Item",
    "LedgerEntry",
    "LedgerType",
    "Reservation",
    "ReservationStatus",
    "Warehouse",
]
