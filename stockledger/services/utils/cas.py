# stockledger/services/utils/cas.py
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from stockledger.core.config import get_settings
from stockledger.obs.metrics import cas_conflicts_total
from stockledger.services.errors import ConcurrentModification

log = logging.getLogger("stockledger.cas")

T = TypeVar("T")

# attempt(i) returns the applied result, or None when the version check lost the race
Attempt = Callable[[int], Awaitable[Optional[T]]]


async def cas_retry(attempt: Attempt[T], *, resource: str, key: object) -> T:
    """
    Compare-and-apply loop: re-read + conditional UPDATE until it sticks.

    Backoff is exponential with jitter; exhausting CAS_MAX_RETRIES raises
    ConcurrentModification (the only failure retried internally).
    """
    s = get_settings()
    retries = int(s.CAS_MAX_RETRIES)
    base, mx = float(s.CAS_BACKOFF_BASE), float(s.CAS_BACKOFF_MAX)

    for i in range(retries):
        res = await attempt(i)
        if res is not None:
            return res
        cas_conflicts_total.labels(resource).inc()
        log.debug("cas conflict on %s %s (attempt %d/%d)", resource, key, i + 1, retries)
        if i < retries - 1:
            backoff = min(mx, base * (1.8 ** (i + 1)))
            await asyncio.sleep(backoff * (0.6 + 0.4 * random.random()))

    raise ConcurrentModification(
        f"{resource} {key} kept changing underneath; gave up after {retries} attempts",
        context={"resource": resource, "key": str(key), "attempts": retries},
    )
