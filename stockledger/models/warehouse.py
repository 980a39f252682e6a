# stockledger/models/warehouse.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class Warehouse(Base):
    """
    Warehouse master (minimal contract):
    - id / name (unique)
    - address is informational only
    Batches reference warehouses; warehouses do not own batches in the ORM.
    """

    __tablename__ = "warehouses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"
