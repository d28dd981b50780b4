"""
Crawl orchestrator: claims queued products and drives the fetcher over them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .config import ConfigStore
from .exceptions import RatingFetchError
from .interfaces import Fetcher, SheetSync
from .models import VALID_RATINGS, CrawlConfig, ItemStatus, QueueItem, normalize_ratings, utcnow
from .queue import QueueStore


logger = logging.getLogger(__name__)

MAX_ITEMS_PER_RUN = 10


@dataclass
class RunSummary:
    ratings: List[int]
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    new_comments: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ratings": self.ratings,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "new_comments": self.new_comments,
        }


class CrawlOrchestrator:
    """Runs one crawl pass at a time over a bounded batch of queue items.

    The orchestrator owns the single-flight flag; the fetcher it is given owns
    the shared rate window and proxy quarantine. All of them are built once
    per process, so a restart starts with a fresh budget.
    """

    def __init__(
        self,
        queue: QueueStore,
        config_store: ConfigStore,
        fetcher: Fetcher,
        *,
        sheet_sync: Optional[SheetSync] = None,
        batch_size: int = MAX_ITEMS_PER_RUN,
    ):
        self.queue = queue
        self.config_store = config_store
        self.fetcher = fetcher
        self.sheet_sync = sheet_sync
        self.batch_size = batch_size
        self._running = False
        self.last_summary: Optional[RunSummary] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self, ratings: Iterable[int] = VALID_RATINGS) -> Optional[RunSummary]:
        """One crawl pass for items targeting any of *ratings*.

        Returns None without doing anything when a pass is already active.
        """
        wanted = normalize_ratings(ratings)
        if not wanted:
            raise ValueError("At least one valid rating (1-5) is required")

        # set before the first await so a concurrent caller sees it
        if self._running:
            logger.info("A crawl process is already running")
            return None
        self._running = True

        summary = RunSummary(ratings=wanted)
        try:
            config = await self.config_store.get()
            items = await self.queue.claim_batch(self.batch_size, wanted)
            summary.claimed = len(items)
            logger.info(f"Found {len(items)} pending items to crawl (ratings {wanted})")

            for item in items:
                if not await self.queue.mark_processing(item):
                    logger.info(f"Item {item.id} was claimed elsewhere, skipping")
                    summary.skipped += 1
                    continue
                await self.process_item(item, config, summary)
        finally:
            summary.finished_at = utcnow()
            self.last_summary = summary
            self._running = False

        logger.info(
            f"Crawl finished: {summary.completed} completed, {summary.failed} failed, "
            f"{summary.new_comments} new comments"
        )
        return summary

    async def process_item(self, item: QueueItem, config: CrawlConfig, summary: RunSummary) -> None:
        """Fetch each outstanding rating of a processing item in target order."""
        try:
            for rating in item.target_ratings:
                if rating in item.completed_ratings:
                    logger.info(f"Rating {rating} already crawled for {item.url}")
                    continue
                new_records = await self.fetcher.fetch(item.url, item.product_id, item.shop_id, rating, config)
                summary.new_comments += len(new_records)
                item.record_rating(rating)
                await self.queue.save(item)
            item.complete()
            await self.queue.save(item)
        except Exception as e:
            if isinstance(e, RatingFetchError):
                logger.error(f"Error processing {item.url}: {e}")
            else:
                logger.exception(f"Unexpected error processing {item.url}")
            summary.failed += 1
            await self._record_failure(item, str(e) or type(e).__name__)
            return

        summary.completed += 1
        logger.info(f"Completed crawling for {item.url}")

        await self._sync(config, item.product_id)

    async def _record_failure(self, item: QueueItem, message: str) -> None:
        # a store error here must not end the run; the item stays processing
        # and can be requeued by hand
        try:
            if item.status is ItemStatus.PROCESSING:
                item.fail(message)
            await self.queue.save(item)
        except Exception:
            logger.exception(f"Could not record failure of item {item.id} ({item.url})")

    async def _sync(self, config: CrawlConfig, product_id: str) -> None:
        if self.sheet_sync is None or not config.google_sheet_id:
            return
        try:
            await self.sheet_sync.sync(config.google_sheet_id, product_id)
        except Exception as e:
            logger.error(f"Error syncing product {product_id} to Google Sheet: {e}")

    # ------------------------------------------------------------------ #
    async def status(self) -> Dict[str, Any]:
        """Queue counts, the latest item per state and whether a run is active."""
        counts = await self.queue.status_counts()
        latest = {}
        for state in (ItemStatus.PROCESSING, ItemStatus.COMPLETED, ItemStatus.ERROR):
            items = await self.queue.list_items(status=state.value, limit=1, order_by="updated_at DESC, id DESC")
            latest[state.value] = items[0] if items else None
        return {
            "counts": counts,
            "latest": latest,
            "is_running": self._running,
            "last_run": self.last_summary.as_dict() if self.last_summary else None,
        }
