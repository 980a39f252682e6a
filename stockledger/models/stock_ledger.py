# stockledger/models/stock_ledger.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from stockledger.db.base import Base


class LedgerEntry(Base):
    """
    Stock ledger (append only, never updated)

    - batch_id is a plain id, not a FK: entries outlive deleted batches
    - occurred_at is monotonic per item, which gives replay order
    - details holds structured source fields (source_details, transfer legs, ...)
    """

    __tablename__ = "stock_ledger"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    batch_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True, index=True)
    warehouse_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    target_warehouse_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(sa.Numeric(14, 4), nullable=False)
    previous_quantity: Mapped[Decimal | None] = mapped_column(sa.Numeric(14, 4), nullable=True)

    reference: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(sa.JSON, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.Index("ix_ledger_item_occurred", "item_id", "occurred_at"),
        sa.Index("ix_ledger_type", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ledger {self.type} item={self.item_id} batch={self.batch_id} "
            f"wh={self.warehouse_id}->{self.target_warehouse_id} qty={self.quantity} "
            f"prev={self.previous_quantity} at={self.occurred_at}>"
        )
