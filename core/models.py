"""
Core data models for the review crawler.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .exceptions import InvalidTransition


VALID_RATINGS = (1, 2, 3, 4, 5)

# Shopee product links end with "-i.<shop_id>.<item_id>"
_SHOPEE_IDS = re.compile(r"i\.(\d+)\.(\d+)")

DEFAULT_BASE_URL = "https://shopee-e-commerce-data.p.rapidapi.com/shopee/item/ratings"
DEFAULT_HEADERS = {"x-rapidapi-host": "shopee-e-commerce-data.p.rapidapi.com"}


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def extract_shopee_ids(url: str) -> Optional[Tuple[str, str]]:
    """Return ``(shop_id, product_id)`` parsed from a product url, or None."""
    if not url:
        return None
    match = _SHOPEE_IDS.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def normalize_ratings(ratings) -> List[int]:
    """Keep distinct ratings in [1, 5], preserving the caller's order."""
    out: List[int] = []
    for value in ratings or []:
        try:
            rating = int(value)
        except (TypeError, ValueError):
            continue
        if rating in VALID_RATINGS and rating not in out:
            out.append(rating)
    return out


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# Allowed status changes; anything else raises InvalidTransition.
_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.COMPLETED, ItemStatus.ERROR, ItemStatus.PENDING},
    ItemStatus.COMPLETED: set(),
    ItemStatus.ERROR: {ItemStatus.PENDING},
}


class QueueItem(BaseModel):
    """One crawl target: a product url and the star ratings to collect."""

    id: Optional[int] = None
    url: str
    product_id: str
    shop_id: str
    target_ratings: List[int]
    completed_ratings: List[int] = Field(default_factory=list)
    status: ItemStatus = ItemStatus.PENDING
    last_attempted_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("target_ratings")
    @classmethod
    def _check_targets(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("target_ratings must not be empty")
        if any(r not in VALID_RATINGS for r in value):
            raise ValueError("Target ratings must be between 1 and 5")
        if len(set(value)) != len(value):
            raise ValueError("target_ratings must not contain duplicates")
        return value

    @classmethod
    def from_url(cls, url: str, ratings) -> "QueueItem":
        ids = extract_shopee_ids(url)
        if ids is None:
            raise ValueError(f"Invalid Shopee URL format: {url}")
        shop_id, product_id = ids
        return cls(
            url=url,
            product_id=product_id,
            shop_id=shop_id,
            target_ratings=normalize_ratings(ratings),
        )

    # ------------------------------------------------------------------ #
    @property
    def pending_ratings(self) -> List[int]:
        """Target ratings not yet fetched, in target order."""
        return [r for r in self.target_ratings if r not in self.completed_ratings]

    def _move(self, new_status: ItemStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, new_status.value)
        self.status = new_status
        self.updated_at = utcnow()

    def begin(self, now: Optional[datetime] = None) -> None:
        self._move(ItemStatus.PROCESSING)
        self.last_attempted_at = now or utcnow()
        self.error_message = None

    def record_rating(self, rating: int) -> None:
        if self.status != ItemStatus.PROCESSING:
            raise InvalidTransition(self.status.value, f"record rating {rating}")
        if rating not in self.target_ratings:
            raise ValueError(f"Rating {rating} is not a target of item {self.id}")
        if rating not in self.completed_ratings:
            self.completed_ratings.append(rating)
        self.updated_at = utcnow()

    def complete(self) -> None:
        if self.pending_ratings:
            raise InvalidTransition(
                self.status.value,
                f"{ItemStatus.COMPLETED.value} (ratings {self.pending_ratings} outstanding)",
            )
        self._move(ItemStatus.COMPLETED)

    def fail(self, message: str) -> None:
        self._move(ItemStatus.ERROR)
        self.error_message = message

    def requeue(self) -> None:
        """Manual reset of an errored or stranded item back to pending."""
        self._move(ItemStatus.PENDING)
        self.error_message = None


class Comment(BaseModel):
    """One stored review, keyed by ``(product_id, comment_id)``."""

    product_id: str
    comment_id: str
    original_url: str
    rating_star: int = Field(ge=1, le=5)
    comment_text: str = ""
    commenter_username: str = "Unknown"
    comment_timestamp: datetime = Field(default_factory=utcnow)
    anonymous: bool = False
    author_user_id: Optional[int] = None
    like_count: int = 0
    is_hidden: bool = False
    is_repeated_purchase: bool = False
    rating_star_detail: Dict[str, Any] = Field(default_factory=dict)
    rating_images: List[Any] = Field(default_factory=list)
    rating_videos: List[Any] = Field(default_factory=list)
    skus_info: List[Any] = Field(default_factory=list)
    status: Optional[int] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    saved_to_sheet: bool = False
    sheet_row_index: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class CrawlSettings(BaseModel):
    """Request pacing and retry tuning. Delays are milliseconds."""

    min_delay: int = Field(default=1000, ge=0)
    max_delay: int = Field(default=3000, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_min_delay: int = Field(default=5000, ge=0)
    retry_max_delay: int = Field(default=15000, ge=0)
    max_requests_per_hour: int = Field(default=500, ge=1)

    @field_validator("max_delay")
    @classmethod
    def _max_not_below_min(cls, value: int, info) -> int:
        if value < info.data.get("min_delay", 0):
            raise ValueError("max_delay must be >= min_delay")
        return value

    @field_validator("retry_max_delay")
    @classmethod
    def _retry_max_not_below_min(cls, value: int, info) -> int:
        if value < info.data.get("retry_min_delay", 0):
            raise ValueError("retry_max_delay must be >= retry_min_delay")
        return value


class CrawlConfig(BaseModel):
    """Singleton crawl configuration, snapshotted once per run."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    default_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    crawl_settings: CrawlSettings = Field(default_factory=CrawlSettings)
    proxy_list: List[str] = Field(default_factory=list)
    google_sheet_id: Optional[str] = None

    def masked_key(self) -> Optional[str]:
        if not self.api_key:
            return None
        return "***" + self.api_key[-8:]


class AlertKind(str, Enum):
    ANTI_BOT_PROTECTION = "ANTI_BOT_PROTECTION"
    API_ERROR = "API_ERROR"
    CRAWLER_BLOCKED = "CRAWLER_BLOCKED"


class Event(BaseModel):
    """Operational alert raised by the crawler."""
    kind: AlertKind
    level: str  # WARNING, ERROR
    message: str
    source: str = "crawler"
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
