"""
Export stored comments to CSV or JSON.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from core.models import Comment

from .sinks import CommentStore


logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "product_id",
    "comment_id",
    "rating_star",
    "comment_text",
    "commenter_username",
    "comment_timestamp",
    "like_count",
    "anonymous",
    "is_repeated_purchase",
    "rating_images",
    "rating_videos",
    "original_url",
    "saved_to_sheet",
    "created_at",
]

EXPORT_FORMATS = ("csv", "json")


def comments_frame(comments: Iterable[Comment]) -> pd.DataFrame:
    rows = [c.model_dump(include=set(EXPORT_COLUMNS)) for c in comments]
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    for col in ("rating_images", "rating_videos"):
        df[col] = df[col].apply(lambda urls: ", ".join(str(u) for u in urls) if isinstance(urls, list) else "")
    return df


async def export_comments(
    store: CommentStore,
    path: str,
    fmt: str = "csv",
    *,
    product_id: Optional[str] = None,
    rating: Optional[int] = None,
) -> int:
    """Write matching comments to *path*; returns the number of rows written."""
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt} (expected one of {', '.join(EXPORT_FORMATS)})")

    comments = await store.list_comments(product_id, rating, limit=None)
    df = comments_frame(comments)

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "csv":
        df.to_csv(out, index=False, encoding="utf-8-sig")
    else:
        df.to_json(out, orient="records", date_format="iso", force_ascii=False, indent=2)

    logger.info(f"Exported {len(df)} comments to {out}")
    return len(df)
