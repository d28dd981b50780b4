"""
Core interfaces for the review crawler.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import CrawlConfig, Event


class Fetcher(ABC):
    """Fetches every page of one (product, rating) pair.

    Implementations persist new records as a side effect and return the raw
    payloads of the records that were new.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this fetcher."""
        pass

    @abstractmethod
    async def fetch(
        self,
        url: str,
        product_id: str,
        shop_id: str,
        rating: int,
        config: CrawlConfig,
    ) -> List[Dict[str, Any]]:
        """Fetch and store all pages for one rating."""
        pass


class Sink(ABC):
    """Abstract base class for alert sinks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def handle(self, event: Event) -> None:
        """Deliver one alert event."""
        pass

    async def close(self) -> None:
        """Release any resources held by the sink."""
        pass


class SheetSync(ABC):
    """Boundary to the spreadsheet exporter.

    The exporter owns the ``saved_to_sheet`` flag on stored comments; the
    crawler only tells it which product just finished.
    """

    @abstractmethod
    async def sync(self, spreadsheet_id: str, product_id: Optional[str] = None) -> None:
        """Push unsynced comments (optionally for one product) to the sheet."""
        pass
