"""
Durable crawl queue backed by SQLite.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import aiosqlite
from pydantic import ValidationError

from .infra.db import Database
from .models import ItemStatus, QueueItem, extract_shopee_ids, normalize_ratings


logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    url: str
    accepted: bool
    reason: str
    item: Optional[QueueItem] = None


@dataclass
class BulkEnqueueResult:
    results: List[EnqueueResult] = field(default_factory=list)
    errors: List[EnqueueResult] = field(default_factory=list)


class RemoveResult(str, Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class QueueStore:
    """Crawl work items with a pending → processing → completed/error lifecycle."""

    TABLE = "crawl_queue"

    def __init__(self, db: Database):
        self.db = db

    async def ensure_schema(self) -> None:
        await self.db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL,
                product_id TEXT NOT NULL,
                shop_id TEXT NOT NULL,
                target_ratings TEXT NOT NULL,
                completed_ratings TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'processing', 'completed', 'error')),
                last_attempted_at TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self.db.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_crawl_queue_status
            ON {self.TABLE}(status, created_at)
        """)
        await self.db.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_crawl_queue_url
            ON {self.TABLE}(url)
        """)

    # ------------------------------------------------------------------ #
    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> QueueItem:
        return QueueItem(
            id=row["id"],
            url=row["url"],
            product_id=row["product_id"],
            shop_id=row["shop_id"],
            target_ratings=json.loads(row["target_ratings"]),
            completed_ratings=json.loads(row["completed_ratings"]),
            status=ItemStatus(row["status"]),
            last_attempted_at=_dt(row["last_attempted_at"]),
            error_message=row["error_message"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    async def get(self, item_id: int) -> Optional[QueueItem]:
        row = await self.db.fetch_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (item_id,))
        return self._row_to_item(row) if row else None

    # ------------------------------------------------------------------ #
    async def enqueue(self, url: str, ratings: Iterable[int]) -> EnqueueResult:
        """Add one url to the queue unless it is malformed or already queued."""
        url = (url or "").strip()
        if extract_shopee_ids(url) is None:
            return EnqueueResult(url, False, "Invalid Shopee URL format")

        valid = normalize_ratings(ratings)
        if not valid:
            return EnqueueResult(url, False, "At least one valid rating (1-5) is required")

        try:
            item = QueueItem.from_url(url, valid)
        except ValidationError as exc:
            return EnqueueResult(url, False, str(exc))

        async with self.db.transaction():
            rows = await self.db.fetch_all(
                f"SELECT target_ratings FROM {self.TABLE} "
                "WHERE url = ? AND status IN ('pending', 'processing')",
                (url,),
            )
            wanted = sorted(valid)
            for row in rows:
                if sorted(json.loads(row["target_ratings"])) == wanted:
                    return EnqueueResult(url, False, "URL already in queue with the same ratings")

            item.id = await self.db.insert(self.TABLE, {
                "url": item.url,
                "product_id": item.product_id,
                "shop_id": item.shop_id,
                "target_ratings": json.dumps(item.target_ratings),
                "completed_ratings": "[]",
                "status": item.status.value,
                "created_at": item.created_at.isoformat(),
                "updated_at": item.updated_at.isoformat(),
            })

        logger.info(f"Queued {item.url} (product {item.product_id}, ratings {item.target_ratings})")
        return EnqueueResult(url, True, "Added to queue successfully", item)

    async def enqueue_many(self, urls: Iterable[str], ratings: Iterable[int]) -> BulkEnqueueResult:
        ratings = list(ratings)
        out = BulkEnqueueResult()
        for url in urls:
            result = await self.enqueue(url, ratings)
            if result.accepted or "already in queue" in result.reason:
                out.results.append(result)
            else:
                out.errors.append(result)
        return out

    # ------------------------------------------------------------------ #
    async def claim_batch(self, limit: int, rating_filter: Iterable[int]) -> List[QueueItem]:
        """Oldest pending items targeting at least one of *rating_filter*.

        Selection does not change status; the caller moves each item to
        processing with :meth:`mark_processing`.
        """
        ratings = normalize_ratings(rating_filter)
        if not ratings or limit <= 0:
            return []
        marks = ", ".join("?" * len(ratings))
        async with self.db.transaction():
            rows = await self.db.fetch_all(
                f"""
                SELECT * FROM {self.TABLE} q
                WHERE q.status = 'pending'
                  AND EXISTS (
                      SELECT 1 FROM json_each(q.target_ratings) r WHERE r.value IN ({marks})
                  )
                ORDER BY q.created_at ASC, q.id ASC
                LIMIT ?
                """,
                (*ratings, limit),
            )
        return [self._row_to_item(row) for row in rows]

    async def mark_processing(self, item: QueueItem, now: Optional[datetime] = None) -> bool:
        """Compare-and-set pending → processing. False if another claimer won."""
        item.begin(now)
        cursor = await self.db.execute(
            f"UPDATE {self.TABLE} SET status = ?, last_attempted_at = ?, error_message = NULL, "
            "updated_at = ? WHERE id = ? AND status = 'pending'",
            (item.status.value, item.last_attempted_at.isoformat(), item.updated_at.isoformat(), item.id),
        )
        return cursor.rowcount == 1

    async def save(self, item: QueueItem) -> None:
        """Persist progress, status and diagnostics of an item."""
        await self.db.execute(
            f"UPDATE {self.TABLE} SET completed_ratings = ?, status = ?, last_attempted_at = ?, "
            "error_message = ?, updated_at = ? WHERE id = ?",
            (
                json.dumps(item.completed_ratings),
                item.status.value,
                item.last_attempted_at.isoformat() if item.last_attempted_at else None,
                item.error_message,
                item.updated_at.isoformat(),
                item.id,
            ),
        )

    async def remove(self, item_id: int) -> RemoveResult:
        cursor = await self.db.execute(
            f"DELETE FROM {self.TABLE} WHERE id = ? AND status = 'pending'", (item_id,)
        )
        if cursor.rowcount == 1:
            logger.info(f"Removed queue item {item_id}")
            return RemoveResult.REMOVED
        if await self.get(item_id) is None:
            return RemoveResult.NOT_FOUND
        return RemoveResult.REJECTED

    async def requeue(self, item_id: int) -> Optional[QueueItem]:
        """Manually put an errored or stranded item back to pending."""
        item = await self.get(item_id)
        if item is None:
            return None
        item.requeue()
        await self.save(item)
        logger.info(f"Requeued item {item_id} ({item.url})")
        return item

    # ------------------------------------------------------------------ #
    async def list_items(
        self,
        status: Optional[str] = None,
        rating: Optional[int] = None,
        limit: Optional[int] = None,
        order_by: str = "created_at DESC, id DESC",
    ) -> List[QueueItem]:
        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(ItemStatus(status).value)
        if rating is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(target_ratings) r WHERE r.value = ?)")
            params.append(int(rating))
        sql = f"SELECT * FROM {self.TABLE}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {order_by}"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.fetch_all(sql, params)
        return [self._row_to_item(row) for row in rows]

    async def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        rows = await self.db.fetch_all(f"SELECT status, COUNT(*) AS n FROM {self.TABLE} GROUP BY status")
        for row in rows:
            counts[row["status"]] = row["n"]
        counts["total"] = sum(counts.values())
        return counts
