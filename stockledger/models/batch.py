# stockledger/models/batch.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class Batch(Base):
    """
    Batch (lot): a traceable quantity of one item in one warehouse.

    Quantity fields:
        - quantity          current physical quantity (>= 0)
        - initial_quantity  cost-basis denominator; only changed proportionally on transfer

    Dates:
        - expiry_date       NULL means "no expiry" (sorted last by FEFO, never treated as expired)
        - received_date     FIFO ordering key

    source_details is opaque to the core: {"source_type": "purchase", "order_id": ...}
    """

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )

    batch_number: Mapped[str] = mapped_column(String(64), nullable=False)
    lot_number: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    initial_quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0")
    )
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, default=Decimal("0"), server_default=text("0")
    )

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    source_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    certificate_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    certificate_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_batches_item_wh", "item_id", "warehouse_id"),
        Index("ix_batches_item_lot", "item_id", "lot_number"),
        Index("ix_batches_expiry_date", "expiry_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} item={self.item_id} wh={self.warehouse_id} "
            f"lot={self.lot_number} qty={self.quantity}/{self.initial_quantity} "
            f"exp={self.expiry_date} v={self.version}>"
        )
