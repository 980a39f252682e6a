# stockledger/models/counter.py
from __future__ import annotations

from sqlalchemy import Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class Counter(Base):
    """Named sequence (e.g. LOT-20250101) used for generated lot numbers."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))

    def __repr__(self) -> str:
        return f"<Counter {self.name}={self.value} v={self.version}>"
