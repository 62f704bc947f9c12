"""Advisory rate-limit checks for batches of remote calls.

``RateLimitGuard`` asks the tracker for its current call budget so callers
can pre-flight a batch (``check_rate_limit``) or wait out an exhausted
budget (``wait_for_rate_limit``).  It does not replace the retry path in
``RemoteExecutor``, which still handles rate-limit responses mid-flight.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable

from workitem_sync.sync.models import RateLimitInfo

logger = logging.getLogger(__name__)


class RateLimitGuard:
    """Query and respect the tracker's remaining call budget.

    Args:
        fetch: Coroutine function returning the current ``RateLimitInfo``.
        sleep: Coroutine used to wait (injectable for tests).
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[RateLimitInfo]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetch = fetch
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_rate_limit_info(self) -> RateLimitInfo:
        return await self._fetch()

    async def check_rate_limit(self, required_calls: int = 1) -> bool:
        """``True`` if at least *required_calls* remain in the budget."""
        info = await self._fetch()
        return info.remaining >= required_calls

    async def wait_for_rate_limit(self) -> float:
        """Sleep until the budget resets if it is exhausted.

        Returns:
            Seconds slept (0.0 when the budget was not exhausted or the
            reset time has already passed).
        """
        info = await self._fetch()
        if info.remaining > 0:
            return 0.0
        wait_seconds = (info.reset - self._clock()).total_seconds()
        if wait_seconds <= 0:
            return 0.0
        logger.info(
            "Waiting %ds for rate limit reset", math.ceil(wait_seconds)
        )
        await self._sleep(wait_seconds)
        return wait_seconds
