"""
Shopee ratings parser - maps raw rating records onto :class:`Comment`.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from core.models import VALID_RATINGS, Comment, utcnow


logger = logging.getLogger(__name__)


def derive_comment_id(record: Dict[str, Any]) -> str:
    """Provider comment id, else the order id, else a generated placeholder."""
    for key in ("cmtid", "order_id"):
        value = record.get(key)
        # 0 is a real id; only absent or blank ids fall through
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return f"unknown-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _timestamp(ctime: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(ctime), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return utcnow()


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def parse_ratings_page(payload: Any) -> tuple[List[Dict[str, Any]], bool]:
    """Return ``(records, has_next_page)`` from a ratings API response.

    A response without ``data.ratings`` is treated as an empty last page.
    ``has_next_page`` is taken verbatim; page size is never used to guess it.
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not isinstance(data.get("ratings"), list):
        logger.warning("No valid data returned from API: %s", str(payload)[:200])
        return [], False
    return data["ratings"], data.get("has_next_page") is True


def to_comment(record: Dict[str, Any], *, product_id: str, url: str, rating: int) -> Comment:
    """Build a :class:`Comment` from one raw rating record."""
    star = record.get("rating_star")
    if star not in VALID_RATINGS:
        star = rating

    author_user_id = record.get("author_userid")
    try:
        author_user_id = int(author_user_id) if author_user_id is not None else None
    except (TypeError, ValueError):
        author_user_id = None

    detail = record.get("rating_star_detail")

    return Comment(
        product_id=str(product_id),
        comment_id=derive_comment_id(record),
        original_url=url,
        rating_star=star,
        comment_text=record.get("comment") or "",
        commenter_username=record.get("author_username") or "Unknown",
        comment_timestamp=_timestamp(record.get("ctime")),
        anonymous=bool(record.get("anonymous", False)),
        author_user_id=author_user_id,
        like_count=_int(record.get("like_count") or 0),
        is_hidden=bool(record.get("is_hidden", False)),
        is_repeated_purchase=bool(record.get("is_repeated_purchase", False)),
        rating_star_detail=detail if isinstance(detail, dict) else {},
        rating_images=_list(record.get("rating_imgs")),
        rating_videos=_list(record.get("rating_videos")),
        skus_info=_list(record.get("skus_info")),
        status=record.get("status") if isinstance(record.get("status"), int) else None,
        raw_data=dict(record),
    )
