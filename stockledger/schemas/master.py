# stockledger/schemas/master.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import Field, field_validator

from stockledger.schemas._base import _Base


class ItemCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=128)]
    unit: Annotated[str, Field(min_length=1, max_length=16)] = "pcs"
    unit_price: Annotated[Decimal, Field(ge=0)] = Decimal("0")

    @field_validator("name", "unit", mode="before")
    @classmethod
    def _trim(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class ItemOut(_Base):
    id: int
    name: str
    unit: str
    quantity: Decimal
    booked_quantity: Decimal
    unit_price: Decimal
    version: int
    updated_at: datetime | None = None


class WarehouseCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=100)]
    address: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _trim(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class WarehouseOut(_Base):
    id: int
    name: str
    address: str | None = None
