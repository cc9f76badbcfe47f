"""In-process cache of rendered feed documents.

One entry per category (plus one for the aggregate view) holds all three
rendered formats. Entries are built lazily on the first read and dropped
synchronously whenever the store writes to the category; there is no TTL.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import structlog

from dealfeeds.schemas.feed import FeedFormat
from dealfeeds.services.category_registry import AGGREGATE_KEY, CategoryRegistry
from dealfeeds.services.feed_renderer import FeedRenderer
from dealfeeds.services.partition_store import PartitionedStore

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class FeedCacheEntry:
    """Rendered documents of one category and when they were generated."""

    documents: Dict[FeedFormat, str]
    generated_at: datetime
    item_count: int


class FeedCache:
    """Lazily rebuilt, invalidation-driven feed cache.

    The cache holds no state of its own worth keeping: every entry can be
    regenerated from the PartitionedStore at any time.
    """

    def __init__(
        self,
        store: PartitionedStore,
        registry: CategoryRegistry,
        renderer: FeedRenderer,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """Initialize feed cache.

        Args:
            store: Source of deal records
            registry: Category registry used to resolve names and slugs
            renderer: Renders records into documents
            page_size: Number of newest deals included in each feed
        """
        self.store = store
        self.registry = registry
        self.renderer = renderer
        self.page_size = page_size
        self._entries: Dict[str, FeedCacheEntry] = {}
        # Bumped on every invalidation so an in-flight rebuild can tell
        # that its result is already stale
        self._versions: Dict[str, int] = {}
        self.logger = logger.bind(service="feed_cache")

    @staticmethod
    def _is_aggregate(category: Optional[str]) -> bool:
        return category is None or category.strip().casefold() == AGGREGATE_KEY

    def _cache_key(self, category: Optional[str]) -> Optional[str]:
        if self._is_aggregate(category):
            return AGGREGATE_KEY
        return self.registry.canonical(category)

    async def get(self, category: Optional[str], fmt: FeedFormat) -> Optional[str]:
        """Return a rendered feed document, rebuilding it if needed.

        Args:
            category: Category name in any casing; None or "all" for the
                aggregate feed
            fmt: Output format

        Returns:
            Document text, or None if the category is unknown

        Raises:
            PartitionError: If the store cannot be read during a rebuild
        """
        fmt = FeedFormat(fmt)
        key = self._cache_key(category)
        if key is None:
            self.logger.debug("feed_unknown_category", category=category)
            return None

        entry = self._entries.get(key)
        if entry is None:
            self.logger.debug("feed_cache_miss", category=key)
            entry = await self._rebuild(key)
        else:
            self.logger.debug("feed_cache_hit", category=key)

        return entry.documents[fmt]

    def get_entry(self, category: Optional[str]) -> Optional[FeedCacheEntry]:
        """Return the cached entry without rebuilding it."""
        key = self._cache_key(category)
        if key is None:
            return None
        return self._entries.get(key)

    def invalidate(self, category: str) -> None:
        """Discard the entry of a category and the aggregate entry."""
        key = self._cache_key(category) or category
        for stale in {key, AGGREGATE_KEY}:
            self._versions[stale] = self._versions.get(stale, 0) + 1
            if self._entries.pop(stale, None) is not None:
                self.logger.debug("feed_cache_invalidated", category=stale)

    def clear(self) -> None:
        """Discard every entry."""
        for key in set(self._entries) | set(self._versions):
            self._versions[key] = self._versions.get(key, 0) + 1
        self._entries.clear()
        self.logger.info("feed_cache_cleared")

    async def _rebuild(self, key: str) -> FeedCacheEntry:
        version = self._versions.get(key, 0)

        if key == AGGREGATE_KEY:
            records = await self.store.query(None, self.page_size)
            meta = self.renderer.metadata()
        else:
            records = await self.store.query(key, self.page_size)
            meta = self.renderer.metadata(key, self.registry.slug_of(key))

        entry = FeedCacheEntry(
            documents=self.renderer.render_all(records, meta),
            generated_at=datetime.now(timezone.utc),
            item_count=len(records),
        )

        # A write landed while the store was being read: serve this result
        # once but do not keep it
        if self._versions.get(key, 0) == version:
            self._entries[key] = entry
        else:
            self.logger.debug("feed_cache_rebuild_discarded", category=key)

        self.logger.info("feed_regenerated", category=key, items=len(records))
        return entry
