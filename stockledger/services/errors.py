# stockledger/services/errors.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional


def _shortage_detail(
    *,
    item_id: int,
    batch_id: Optional[int],
    available_qty: Decimal,
    required_qty: Decimal,
    path: str,
) -> Dict[str, Any]:
    short_qty = max(Decimal("0"), required_qty - available_qty)
    return {
        "type": "shortage",
        "path": path,
        "item_id": int(item_id),
        "batch_id": batch_id,
        "required_qty": str(required_qty),
        "available_qty": str(available_qty),
        "short_qty": str(short_qty),
        "reason": "insufficient_stock",
    }


class InventoryError(Exception):
    """
    Base of every business-rule failure raised by the inventory core.

    error_code / http_status / context / details map 1:1 onto the problem JSON
    returned by the API layer.
    """

    error_code = "inventory_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.details = list(details or [])


class NotFound(InventoryError):
    error_code = "not_found"
    http_status = 404


class InvalidQuantity(InventoryError):
    error_code = "invalid_quantity"
    http_status = 422


class MissingWarehouse(InventoryError):
    error_code = "missing_warehouse"
    http_status = 422


class WrongWarehouse(InventoryError):
    error_code = "wrong_warehouse"
    http_status = 409


class BatchInUse(InventoryError):
    error_code = "batch_in_use"
    http_status = 409


class DuplicateName(InventoryError):
    error_code = "duplicate_name"
    http_status = 409


class ConcurrentModification(InventoryError):
    error_code = "concurrent_modification"
    http_status = 409


class InsufficientQuantity(InventoryError):
    """Allocation / issue / transfer cannot be covered. Always carries the shortfall."""

    error_code = "insufficient_quantity"
    http_status = 409

    def __init__(
        self,
        message: str,
        *,
        item_id: int,
        required: Decimal,
        available: Decimal,
        batch_id: Optional[int] = None,
        path: str = "allocate",
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.item_id = item_id
        self.batch_id = batch_id
        self.required = required
        self.available = available
        self.shortfall = max(Decimal("0"), required - available)
        ctx = {"item_id": item_id, "shortfall": str(self.shortfall), **(context or {})}
        super().__init__(
            message,
            context=ctx,
            details=[
                _shortage_detail(
                    item_id=item_id,
                    batch_id=batch_id,
                    available_qty=available,
                    required_qty=required,
                    path=path,
                )
            ],
        )


class InsufficientBatchQuantity(InsufficientQuantity):
    """Pinned batch cannot cover the request."""

    error_code = "insufficient_batch_quantity"


__all__ = [
    "BatchInUse",
    "ConcurrentModification",
    "DuplicateName",
    "InsufficientBatchQuantity",
    "InsufficientQuantity",
    "InvalidQuantity",
    "InventoryError",
    "MissingWarehouse",
    "NotFound",
    "WrongWarehouse",
]
