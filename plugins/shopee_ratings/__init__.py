"""
Shopee Ratings Plugin - rating API fetcher, parser and comment store.
"""

from .fetcher import ANTI_BOT_STATUS, RatingsFetcher
from .parser import derive_comment_id, parse_ratings_page, to_comment
from .sinks import CommentStore, StoreResult

__all__ = [
    "ANTI_BOT_STATUS",
    "RatingsFetcher",
    "derive_comment_id",
    "parse_ratings_page",
    "to_comment",
    "CommentStore",
    "StoreResult",
]
