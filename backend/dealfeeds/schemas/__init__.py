"""Pydantic schemas for the DealFeeds API.

All response models and feed documents are defined here for easy import.
"""

from dealfeeds.schemas.common import ApiResponse
from dealfeeds.schemas.category import CategoryResponse
from dealfeeds.schemas.feed import FeedFormat, JsonFeed, JsonFeedItem
from dealfeeds.schemas.health import HealthCheckResponse
from dealfeeds.schemas.refresh import CATEGORY_NOT_FOUND, REFRESH_IN_PROGRESS, RefreshResult

__all__ = [
    # Common
    "ApiResponse",
    # Category
    "CategoryResponse",
    # Feed
    "FeedFormat",
    "JsonFeed",
    "JsonFeedItem",
    # Health
    "HealthCheckResponse",
    # Refresh
    "CATEGORY_NOT_FOUND",
    "REFRESH_IN_PROGRESS",
    "RefreshResult",
]
