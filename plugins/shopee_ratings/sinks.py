"""
Comment store - idempotent persistence of fetched ratings.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from core.infra.db import Database
from core.models import Comment


logger = logging.getLogger(__name__)


class StoreResult(str, Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


_JSON_COLUMNS = ("rating_star_detail", "rating_images", "rating_videos", "skus_info", "raw_data")
_BOOL_COLUMNS = ("anonymous", "is_hidden", "is_repeated_purchase", "saved_to_sheet")


class CommentStore:
    """Stores comments keyed by ``(product_id, comment_id)``.

    The natural key is a UNIQUE constraint in the table, so a second delivery
    of the same record is a no-op at the storage layer. Existing rows are
    never rewritten; only the sheet-sync columns change afterwards.
    """

    name = "CommentStore"
    TABLE = "comments"

    def __init__(self, db: Database):
        self.db = db

    async def ensure_schema(self) -> None:
        await self.db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id TEXT NOT NULL,
                comment_id TEXT NOT NULL,
                original_url TEXT NOT NULL,
                rating_star INTEGER NOT NULL CHECK (rating_star BETWEEN 1 AND 5),
                comment_text TEXT,
                commenter_username TEXT,
                comment_timestamp TEXT,
                anonymous INTEGER NOT NULL DEFAULT 0,
                author_user_id INTEGER,
                like_count INTEGER NOT NULL DEFAULT 0,
                is_hidden INTEGER NOT NULL DEFAULT 0,
                is_repeated_purchase INTEGER NOT NULL DEFAULT 0,
                rating_star_detail TEXT,
                rating_images TEXT,
                rating_videos TEXT,
                skus_info TEXT,
                status INTEGER,
                raw_data TEXT,
                saved_to_sheet INTEGER NOT NULL DEFAULT 0,
                sheet_row_index INTEGER,
                created_at TEXT NOT NULL,
                UNIQUE (product_id, comment_id)
            )
        """)
        await self.db.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_comments_product
            ON {self.TABLE}(product_id, rating_star)
        """)
        await self.db.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_comments_unsynced
            ON {self.TABLE}(saved_to_sheet)
        """)

    # ------------------------------------------------------------------ #
    @staticmethod
    def _to_row(comment: Comment) -> Dict[str, Any]:
        data = comment.model_dump()
        for col in _JSON_COLUMNS:
            data[col] = json.dumps(data[col], ensure_ascii=False, default=str)
        for col in _BOOL_COLUMNS:
            data[col] = int(bool(data[col]))
        data["comment_timestamp"] = comment.comment_timestamp.isoformat()
        data["created_at"] = comment.created_at.isoformat()
        # a new record always starts unsynced
        data["saved_to_sheet"] = 0
        data["sheet_row_index"] = None
        return data

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> Comment:
        data = dict(row)
        data.pop("id", None)
        for col in _JSON_COLUMNS:
            data[col] = json.loads(data[col]) if data[col] else ([] if col in ("rating_images", "rating_videos", "skus_info") else {})
        for col in _BOOL_COLUMNS:
            data[col] = bool(data[col])
        data["comment_timestamp"] = datetime.fromisoformat(data["comment_timestamp"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return Comment.model_validate(data)

    async def store(self, product_id: str, comment: Comment) -> StoreResult:
        """Insert *comment* unless ``(product_id, comment_id)`` already exists."""
        if comment.product_id != str(product_id):
            comment = comment.model_copy(update={"product_id": str(product_id)})

        inserted = await self.db.insert_ignore(
            self.TABLE, self._to_row(comment), ["product_id", "comment_id"]
        )
        if inserted:
            logger.debug(f"Saved new comment {comment.comment_id} for product {product_id}")
            return StoreResult.INSERTED
        logger.debug(f"Comment already exists: {product_id}/{comment.comment_id}")
        return StoreResult.ALREADY_PRESENT

    async def get(self, product_id: str, comment_id: str) -> Optional[Comment]:
        row = await self.db.fetch_one(
            f"SELECT * FROM {self.TABLE} WHERE product_id = ? AND comment_id = ?",
            (str(product_id), str(comment_id)),
        )
        return self._from_row(row) if row else None

    # ------------------------------------------------------------------ #
    @staticmethod
    def _filters(product_id: Optional[str], rating: Optional[int]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if product_id:
            clauses.append("product_id = ?")
            params.append(str(product_id))
        if rating is not None:
            clauses.append("rating_star = ?")
            params.append(int(rating))
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params

    async def count(self, product_id: Optional[str] = None, rating: Optional[int] = None) -> int:
        where, params = self._filters(product_id, rating)
        return await self.db.fetch_value(f"SELECT COUNT(*) FROM {self.TABLE}{where}", params)

    async def list_comments(
        self,
        product_id: Optional[str] = None,
        rating: Optional[int] = None,
        *,
        limit: Optional[int] = 50,
        page: int = 1,
    ) -> List[Comment]:
        """Newest comments first, optionally paginated."""
        where, params = self._filters(product_id, rating)
        sql = f"SELECT * FROM {self.TABLE}{where} ORDER BY comment_timestamp DESC, id DESC"
        if limit:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), (max(int(page), 1) - 1) * int(limit)])
        rows = await self.db.fetch_all(sql, params)
        return [self._from_row(row) for row in rows]

    # ------------------------------------------------------------------ #
    # Sheet-sync boundary: only the exporter calls these.
    async def sync_counts(self) -> Dict[str, int]:
        total = await self.db.fetch_value(f"SELECT COUNT(*) FROM {self.TABLE}")
        synced = await self.db.fetch_value(f"SELECT COUNT(*) FROM {self.TABLE} WHERE saved_to_sheet = 1")
        return {"total": total, "synced": synced, "pending": total - synced}

    async def unsynced(self, product_id: Optional[str] = None, limit: Optional[int] = None) -> List[Comment]:
        sql = f"SELECT * FROM {self.TABLE} WHERE saved_to_sheet = 0"
        params: List[Any] = []
        if product_id:
            sql += " AND product_id = ?"
            params.append(str(product_id))
        sql += " ORDER BY created_at ASC, id ASC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = await self.db.fetch_all(sql, params)
        return [self._from_row(row) for row in rows]

    async def mark_synced(self, product_id: str, comment_id: str, row_index: Optional[int] = None) -> bool:
        cursor = await self.db.execute(
            f"UPDATE {self.TABLE} SET saved_to_sheet = 1, sheet_row_index = ? "
            "WHERE product_id = ? AND comment_id = ?",
            (row_index, str(product_id), str(comment_id)),
        )
        return cursor.rowcount == 1
