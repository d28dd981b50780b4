"""
Process wiring: builds the crawler's stores, alert sinks and orchestrator
from :class:`Settings`.
"""

import logging
from typing import Optional

from plugins.shopee_ratings import CommentStore, RatingsFetcher
from sinks.alert_log_sink import AlertLogSink
from sinks.discord_sink import DiscordSink
from sinks.telegram_sink import TelegramSink

from .alerts import AlertDispatcher
from .config import ConfigStore, Settings
from .infra.db import Database
from .infra.identity import IdentityRotator
from .infra.rate import RateGovernor
from .interfaces import SheetSync
from .orchestrator import CrawlOrchestrator
from .queue import QueueStore


logger = logging.getLogger(__name__)


class CrawlerApp:
    """Everything one crawler process needs, created once at start-up."""

    def __init__(self, settings: Settings, *, sheet_sync: Optional[SheetSync] = None):
        self.settings = settings
        self.db = Database(settings.db_path)
        self.queue = QueueStore(self.db)
        self.config_store = ConfigStore(self.db, bootstrap_api_key=settings.api_key)
        self.comments = CommentStore(self.db)

        self.alert_log = AlertLogSink(settings.alerts.log_path)
        self.alerts = AlertDispatcher([self.alert_log])
        if settings.alerts.telegram_bot_token and settings.alerts.telegram_chat_id:
            self.alerts.add_sink(TelegramSink(
                bot_token=settings.alerts.telegram_bot_token,
                chat_id=settings.alerts.telegram_chat_id,
            ))
        if settings.alerts.discord_webhook_url:
            self.alerts.add_sink(DiscordSink(settings.alerts.discord_webhook_url))

        # process-wide request budget and proxy quarantine
        self.governor = RateGovernor()
        self.rotator = IdentityRotator()
        self.fetcher = RatingsFetcher(self.comments, self.governor, self.rotator, self.alerts)
        self.orchestrator = CrawlOrchestrator(
            self.queue,
            self.config_store,
            self.fetcher,
            sheet_sync=sheet_sync,
        )

    async def open(self) -> "CrawlerApp":
        await self.db.connect()
        await self.queue.ensure_schema()
        await self.config_store.ensure_schema()
        await self.comments.ensure_schema()
        logger.info(
            f"Crawler ready (db {self.db.db_path}, "
            f"{len(self.alerts.sinks)} alert sink(s): {', '.join(s.name for s in self.alerts.sinks)})"
        )
        return self

    async def close(self) -> None:
        await self.fetcher.close()
        await self.alerts.close()
        await self.db.close()

    async def __aenter__(self) -> "CrawlerApp":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
