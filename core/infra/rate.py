"""
Process-wide request budget for the ratings provider.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

from ..models import CrawlConfig


logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600.0
SAFETY_MARGIN_SECONDS = 5.0


class RateGovernor:
    """Admits at most ``max_requests_per_hour`` requests in any rolling hour.

    The governor keeps the admission times of the current window. Callers
    admit immediately before sending, so an admission time is a send time. When the
    budget is used up the caller is suspended until the oldest admission
    leaves the window (plus a small safety margin). There is no per-proxy or
    per-product partitioning; one instance is shared by the whole process and
    starts empty again after a restart.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        window: float = WINDOW_SECONDS,
        margin: float = SAFETY_MARGIN_SECONDS,
    ):
        self._clock = clock
        self._sleep = sleep
        self._window = window
        self._margin = margin
        self._admitted: Deque[float] = deque()

    @property
    def used(self) -> int:
        self._expire(self._clock())
        return len(self._admitted)

    def _expire(self, now: float) -> None:
        while self._admitted and now - self._admitted[0] >= self._window:
            self._admitted.popleft()

    async def admit(self, config: CrawlConfig) -> None:
        limit = config.crawl_settings.max_requests_per_hour
        now = self._clock()
        self._expire(now)

        while len(self._admitted) >= limit:
            wait = self._window - (now - self._admitted[0]) + self._margin
            logger.warning(
                "Hourly request budget exhausted (%d/%d) – pausing %.0fs",
                len(self._admitted), limit, wait,
            )
            await self._sleep(wait)
            now = self._clock()
            self._expire(now)

        self._admitted.append(now)
