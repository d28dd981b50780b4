"""
Alert dispatch: builds crawler alert events and fans them out to sinks.
"""

import logging
from typing import Iterable, List, Optional

from .interfaces import Sink
from .models import AlertKind, Event


logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Fire-and-forget delivery of operational alerts.

    Every sink is tried in turn; a sink that raises is logged and skipped so
    alerting can never fail the crawl that triggered it.
    """

    def __init__(self, sinks: Optional[Iterable[Sink]] = None):
        self.sinks: List[Sink] = list(sinks or [])
        self.sent: int = 0

    def add_sink(self, sink: Sink) -> None:
        self.sinks.append(sink)

    async def emit(self, event: Event) -> None:
        logger.error(f"[ALERT] {event.message}")
        self.sent += 1
        for sink in self.sinks:
            try:
                await sink.handle(event)
            except Exception as e:
                logger.error(f"Alert sink {sink.name} failed: {e}")

    async def anti_bot_detected(self, product_id: str, url: str, status: int, message: str = "") -> None:
        await self.emit(Event(
            kind=AlertKind.ANTI_BOT_PROTECTION,
            level="WARNING",
            message=f"ANTI-BOT PROTECTION! Crawler blocked by the provider for product {product_id}",
            metadata={
                "productId": str(product_id),
                "url": url,
                "errorCode": status,
                "errorMessage": message or "Unknown error",
            },
        ))

    async def api_error(self, message: str, status: Optional[int] = None) -> None:
        await self.emit(Event(
            kind=AlertKind.API_ERROR,
            level="ERROR",
            message=f"API ERROR: {message}",
            metadata={"errorCode": status if status is not None else "unknown", "errorMessage": message},
        ))

    async def crawler_blocked(self, attempts: int, recent_errors: Optional[List[str]] = None) -> None:
        await self.emit(Event(
            kind=AlertKind.CRAWLER_BLOCKED,
            level="ERROR",
            message=f"CRAWLER BLOCKED! Failed {attempts} consecutive retries",
            metadata={"failedAttempts": attempts, "lastErrors": list(recent_errors or [])},
        ))

    async def close(self) -> None:
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Error closing alert sink {sink.name}: {e}")
