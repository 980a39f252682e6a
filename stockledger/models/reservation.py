# stockledger/models/reservation.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class Reservation(Base):
    """Soft hold of one batch's quantity for a job; never moves physical stock."""

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=False
    )
    # back-reference only; SET NULL keeps finished holds when a batch disappears
    batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("batches.id", ondelete="SET NULL"), nullable=True
    )
    job_reference_id: Mapped[str] = mapped_column(String(128), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'active'"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_reservations_job_item", "job_reference_id", "item_id"),
        Index("ix_reservations_batch_status", "batch_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation id={self.id} job={self.job_reference_id} item={self.item_id} "
            f"batch={self.batch_id} qty={self.quantity} status={self.status}>"
        )
