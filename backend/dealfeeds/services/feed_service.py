"""Deal feed service.

Presentation-facing facade: owns the category registry, the partitioned
store, the feed cache and the refresh service of one process, and exposes
the read and refresh operations used by the API and the scheduler.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from dealfeeds.config import settings
from dealfeeds.schemas.feed import FeedFormat
from dealfeeds.schemas.refresh import CATEGORY_NOT_FOUND, RefreshResult
from dealfeeds.scrapers.base import BaseDealSource
from dealfeeds.services.category_registry import AGGREGATE_KEY, CategoryRegistry
from dealfeeds.services.feed_cache import FeedCache
from dealfeeds.services.feed_renderer import FeedRenderer
from dealfeeds.services.partition_store import PartitionedStore
from dealfeeds.services.refresh_service import RefreshService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CategorySummary:
    """Read-side view of one category."""

    name: str
    slug: str
    item_count: int
    last_refreshed: Optional[datetime]


class DealFeedService:
    """Facade over the feed pipeline.

    Store writes invalidate the cache through a write listener, so every
    component sees the same registry and the cache never outlives a write.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        source: BaseDealSource,
        renderer: Optional[FeedRenderer] = None,
        seed_categories: Optional[List[str]] = None,
        max_items: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        """Initialize deal feed service.

        Args:
            engine: Async SQLAlchemy engine holding the partitions
            source: Upstream deal source used by refreshes
            renderer: Feed renderer, built from settings when omitted
            seed_categories: Categories created on startup, defaults to SEED_CATEGORIES
            max_items: Retention budget, defaults to MAX_ITEMS
            page_size: Deals per feed document, defaults to FEED_PAGE_SIZE
        """
        self.registry = CategoryRegistry()
        self.store = PartitionedStore(
            engine,
            self.registry,
            seed_categories=seed_categories if seed_categories is not None else settings.get_seed_categories(),
        )
        self.renderer = renderer or FeedRenderer.from_settings()
        self.cache = FeedCache(
            self.store,
            self.registry,
            self.renderer,
            page_size=page_size or settings.FEED_PAGE_SIZE,
        )
        self.store.add_write_listener(self.cache.invalidate)
        self.source = source
        self.refresher = RefreshService(
            source,
            self.store,
            max_items=max_items if max_items is not None else settings.MAX_ITEMS,
        )
        self.logger = logger.bind(service="deal_feed_service")

    async def startup(self) -> None:
        """Rehydrate partitions and migrate legacy data.

        Raises:
            SQLAlchemyError: If the storage engine cannot be initialized
        """
        await self.store.initialize()
        migrated = await self.store.migrate_legacy_items()
        self.logger.info(
            "deal_feed_service_started",
            categories=len(self.registry),
            migrated=migrated,
        )

    async def shutdown(self) -> None:
        """Close the upstream client and the storage engine."""
        await self.source.close()
        await self.store.dispose()
        self.cache.clear()
        self.logger.info("deal_feed_service_stopped")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_feed(self, category: Optional[str], fmt: FeedFormat) -> Optional[str]:
        """Rendered feed of a category, or of every category for "all"/None.

        Returns:
            Document text, or None for an unknown category
        """
        return await self.cache.get(category, fmt)

    def get_categories(self) -> List[str]:
        """Display names of every known category, sorted."""
        return sorted(self.registry.list(), key=str.casefold)

    async def get_item_count(self, category: Optional[str]) -> int:
        """Number of stored deals in a category, or in all of them for "all".

        An unknown category has no deals and counts as 0.
        """
        if _is_aggregate(category):
            return await self.store.count(None)
        return await self.store.count(category)

    async def get_last_refreshed(self, category: Optional[str]) -> Optional[datetime]:
        """When a category was last refreshed; the newest of all for "all"."""
        if not _is_aggregate(category):
            return await self.store.get_refresh_timestamp(category)

        latest = None
        for name in self.registry.list():
            stamp = await self.store.get_refresh_timestamp(name)
            if stamp is not None and (latest is None or stamp > latest):
                latest = stamp
        return latest

    def category_slug(self, name: str) -> Optional[str]:
        """Slug of a known category, "all" for the aggregate."""
        if _is_aggregate(name):
            return AGGREGATE_KEY
        return self.registry.slug_of(name)

    def resolve_slug(self, slug: str) -> Optional[str]:
        """Category display name for a slug, or None if nothing owns it."""
        return self.registry.resolve(slug)

    async def get_category_summary(self, name: str) -> Optional[CategorySummary]:
        """Name, slug, size and refresh time of one category."""
        canonical = self.registry.canonical(name)
        if canonical is None:
            return None
        return CategorySummary(
            name=canonical,
            slug=self.registry.slug_of(canonical),
            item_count=await self.store.count(canonical),
            last_refreshed=await self.store.get_refresh_timestamp(canonical),
        )

    async def list_category_summaries(self) -> List[CategorySummary]:
        summaries = []
        for name in self.get_categories():
            summary = await self.get_category_summary(name)
            if summary is not None:
                summaries.append(summary)
        return summaries

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_all(self) -> RefreshResult:
        return await self.refresher.refresh_all()

    async def refresh_category(self, name: str) -> RefreshResult:
        if _is_aggregate(name):
            return RefreshResult(category=name, error=CATEGORY_NOT_FOUND)
        return await self.refresher.refresh_category(name)


def _is_aggregate(category: Optional[str]) -> bool:
    return category is None or category.strip().casefold() == AGGREGATE_KEY
