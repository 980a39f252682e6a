# stockledger/services/lot_numbers.py
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import get_settings
from stockledger.models.counter import Counter
from stockledger.services.utils.cas import cas_retry
from stockledger.services.utils.quantities import today


class LotNumberGenerator:
    """
    LOT-YYYYMMDD-NNNN, one counter row per prefix and day.

    The counter row is bumped with the same version check as stock rows, so two
    receipts on the same day never get the same number.
    """

    async def next(self, session: AsyncSession, *, on: Optional[date] = None) -> str:
        prefix = get_settings().LOT_PREFIX
        name = f"{prefix}-{(on or today()).strftime('%Y%m%d')}"

        async def attempt(_i: int) -> Optional[int]:
            row = (
                await session.execute(
                    select(Counter)
                    .where(Counter.name == name)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()

            if row is None:
                try:
                    async with session.begin_nested():
                        session.add(Counter(name=name, value=1, version=1))
                except IntegrityError:
                    return None
                return 1

            seen_value, seen_version = int(row.value), int(row.version)
            res = await session.execute(
                update(Counter)
                .where(Counter.name == name, Counter.version == seen_version)
                .values(value=seen_value + 1, version=seen_version + 1)
                .execution_options(synchronize_session=False)
            )
            return seen_value + 1 if res.rowcount == 1 else None

        seq = await cas_retry(attempt, resource="counter", key=name)
        return f"{name}-{seq:04d}"
