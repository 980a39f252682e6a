# stockledger/schemas/_base.py
from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    """
    - from_attributes: ORM rows / result dataclasses serialise directly
    - extra="ignore": tolerant of older clients
    - populate_by_name: field name or alias
    """

    model_config = ConfigDict(from_attributes=True, extra="ignore", populate_by_name=True)


PositiveQty = Annotated[Decimal, Field(gt=0)]
