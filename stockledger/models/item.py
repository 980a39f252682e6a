# stockledger/models/item.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class Item(Base):
    """
    Item master:

        id                INTEGER PRIMARY KEY
        name              VARCHAR(128) UNIQUE NOT NULL
        unit              VARCHAR(16)  NOT NULL DEFAULT 'pcs'
        quantity          NUMERIC(14,4) NOT NULL DEFAULT 0   -- Σ batches.quantity, written by the reconciler only
        booked_quantity   NUMERIC(14,4) NOT NULL DEFAULT 0   -- Σ active reservations
        unit_price        NUMERIC(14,4) NOT NULL DEFAULT 0
        version           INTEGER NOT NULL DEFAULT 1         -- compare-and-apply counter
    """

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'pcs'"))

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    booked_quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<Item id={self.id} name={self.name!r} qty={self.quantity} "
            f"booked={self.booked_quantity} v={self.version}>"
        )
