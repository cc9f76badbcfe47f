"""Services module for the feed pipeline.

This module contains the service classes that own categories, partitions,
rendered feeds and refresh cycles.
"""

from dealfeeds.services.category_registry import CategoryRegistry, slugify
from dealfeeds.services.feed_cache import FeedCache
from dealfeeds.services.feed_renderer import FeedRenderer
from dealfeeds.services.feed_service import DealFeedService
from dealfeeds.services.partition_store import PartitionedStore
from dealfeeds.services.refresh_service import RefreshService

__all__ = [
    "CategoryRegistry",
    "slugify",
    "FeedCache",
    "FeedRenderer",
    "DealFeedService",
    "PartitionedStore",
    "RefreshService",
]
