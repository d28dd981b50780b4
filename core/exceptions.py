"""
Exception types shared across the crawler.
"""

from __future__ import annotations

from typing import List, Optional


class InvalidTransition(Exception):
    """Raised when a queue item is asked to make an illegal status change."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move queue item from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class HttpStatusError(Exception):
    """Non-2xx response from an upstream API."""

    def __init__(self, status: int, message: str = "", body: Optional[str] = None):
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")
        self.status = status
        self.message = message
        self.body = body


class RetryExhausted(Exception):
    """All attempts allowed by a retry policy failed."""

    def __init__(self, attempts: int, errors: List[BaseException]):
        last = errors[-1] if errors else None
        super().__init__(f"Gave up after {attempts} retries: {last}")
        self.attempts = attempts
        self.errors = errors


class RatingFetchError(Exception):
    """Terminal failure while fetching one (product, rating) pair."""

    def __init__(self, message: str, *, product_id: str, rating: int, page: int):
        super().__init__(message)
        self.product_id = product_id
        self.rating = rating
        self.page = page


class CrawlBlockedError(RatingFetchError):
    """The provider kept answering with its anti-bot status."""
