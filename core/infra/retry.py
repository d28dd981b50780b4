"""
retry.py – backoff policy value plus a generic async retry combinator.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from ..exceptions import RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many retries to allow and how long to wait before each one.

    The wait before retry *n* (1-based) is drawn uniformly from
    ``[min_delay * multiplier**(n-1), max_delay * multiplier**(n-1)]``.
    All values are seconds.
    """

    max_retries: int
    min_delay: float
    max_delay: float
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError("expected 0 <= min_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def window(self, attempt: int) -> Tuple[float, float]:
        scale = self.multiplier ** (attempt - 1)
        return self.min_delay * scale, self.max_delay * scale

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        low, high = self.window(attempt)
        return (rng or random).uniform(low, high)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_failure: Optional[Callable[[BaseException, int], Awaitable[None] | None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run *operation*, retrying up to ``policy.max_retries`` times.

    Only exceptions matching *retry_on* (and accepted by *should_retry*, when
    given) are retried; anything else propagates straight away.
    ``on_failure(exc, attempt)`` is awaited after every retryable failure
    (attempt 0 is the initial call) so callers can rotate identities or raise
    alerts. When the budget is spent a :class:`RetryExhausted` carrying every
    collected error is raised.
    """
    errors: List[BaseException] = []
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            errors.append(exc)
            if on_failure is not None:
                result = on_failure(exc, attempt)
                if asyncio.iscoroutine(result):
                    await result
            if attempt >= policy.max_retries:
                raise RetryExhausted(attempt, errors) from exc
            attempt += 1
            delay = policy.delay_for(attempt, rng)
            logger.warning(
                "Attempt failed (%s) – retry %d/%d in %.1fs",
                str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                attempt,
                policy.max_retries,
                delay,
            )
            await sleep(delay)
