"""Refresh orchestration service.

Connects the upstream deal source with the partitioned store. Handles the
end-to-end flow of one refresh: fetch -> normalize -> upsert (feed cache
invalidation happens synchronously with each write) -> evict -> record
refresh timestamps.
"""

import asyncio
from typing import Any, Dict, Iterable, Optional, Set

import structlog

from dealfeeds.core.exceptions import NormalizationError, PartitionError
from dealfeeds.schemas.refresh import CATEGORY_NOT_FOUND, REFRESH_IN_PROGRESS, RefreshResult
from dealfeeds.scrapers.base import BaseDealSource, RawFeed
from dealfeeds.scrapers.utils.normalizer import normalize
from dealfeeds.services.partition_store import PartitionedStore

logger = structlog.get_logger(__name__)


class RefreshService:
    """Runs refresh cycles against the store.

    Only one refresh runs at a time: a refresh requested while another is
    in progress returns immediately with error="refresh_in_progress" and
    writes nothing, so overlapping scheduler triggers cannot interleave
    writes to the same partition.
    """

    def __init__(self, source: BaseDealSource, store: PartitionedStore, max_items: int):
        """Initialize refresh service.

        Args:
            source: Upstream deal source
            store: Partitioned store receiving the deals
            max_items: Total retention budget passed to evict_excess()
        """
        self.source = source
        self.store = store
        self.max_items = max_items
        self._lock = asyncio.Lock()
        self.logger = logger.bind(service="refresh_service")

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    async def refresh_all(self) -> RefreshResult:
        """Fetch every category and store its deals.

        Returns:
            RefreshResult with the number of saved and skipped deals
        """
        if self._lock.locked():
            self.logger.warning("refresh_skipped_in_progress", scope="all")
            return RefreshResult(error=REFRESH_IN_PROGRESS)

        async with self._lock:
            self.logger.info("refresh_started", scope="all")
            try:
                feed = await self.source.fetch_all_deals()
            except Exception as e:
                self.logger.error("refresh_fetch_failed", scope="all", error=str(e), exc_info=True)
                return RefreshResult(error=str(e))

            return await self._process(feed, requested=None)

    async def refresh_category(self, name: str) -> RefreshResult:
        """Fetch one category and store its deals.

        A category that was never seen and is absent from the fetch is
        reported as not found; no partition is created for it.

        Args:
            name: Category name in any casing

        Returns:
            RefreshResult for that category
        """
        if self._lock.locked():
            self.logger.warning("refresh_skipped_in_progress", scope=name)
            return RefreshResult(category=name, error=REFRESH_IN_PROGRESS)

        async with self._lock:
            self.logger.info("refresh_started", scope=name)
            try:
                feed = await self.source.fetch_category_deals(name)
            except Exception as e:
                self.logger.error("refresh_fetch_failed", scope=name, error=str(e), exc_info=True)
                return RefreshResult(category=name, error=str(e))

            wanted = name.strip().casefold()
            feed = {key: records for key, records in feed.items() if key.strip().casefold() == wanted}

            known = self.store.registry.canonical(name)
            if known is None and not any(feed.values()):
                self.logger.warning("refresh_category_not_found", category=name)
                return RefreshResult(category=name, error=CATEGORY_NOT_FOUND)

            return await self._process(feed, requested=known or name)

    async def _process(self, feed: RawFeed, requested: Optional[str]) -> RefreshResult:
        stats = {"saved": 0, "skipped": 0}
        touched: Set[str] = set()

        try:
            for category, raw_records in feed.items():
                await self._ingest(category, raw_records, stats, touched)

            await self.store.evict_excess(self.max_items)

            names = set(touched) | set(feed)
            if requested is not None:
                names.add(requested)
            for name in sorted(self._known(names)):
                await self.store.record_refresh_timestamp(name)

        except PartitionError as e:
            self.logger.error(
                "refresh_failed",
                category=e.category,
                saved=stats["saved"],
                error=str(e),
            )
            return RefreshResult(
                saved_count=stats["saved"],
                skipped_count=stats["skipped"],
                category=self._label(requested),
                error=str(e),
            )

        self.logger.info(
            "refresh_completed",
            scope=requested or "all",
            saved=stats["saved"],
            skipped=stats["skipped"],
            categories=len(touched),
        )
        return RefreshResult(
            saved_count=stats["saved"],
            skipped_count=stats["skipped"],
            category=self._label(requested),
        )

    async def _ingest(
        self,
        category: str,
        raw_records: Any,
        stats: Dict[str, int],
        touched: Set[str],
    ) -> None:
        """Normalize and upsert one category's raw records.

        Bad records are logged and counted as skipped; PartitionError
        propagates and stops the batch.
        """
        if not isinstance(raw_records, (list, tuple)):
            self.logger.warning("refresh_malformed_category_payload", category=category)
            return

        for raw in raw_records:
            try:
                record = normalize(raw, fallback_category=category)
            except NormalizationError as e:
                stats["skipped"] += 1
                self.logger.warning("deal_normalization_failed", category=category, error=str(e))
                continue
            except Exception as e:
                stats["skipped"] += 1
                self.logger.error("deal_normalization_failed", category=category, error=str(e), exc_info=True)
                continue

            if await self.store.upsert(record):
                stats["saved"] += 1
                touched.add(self.store.registry.canonical(record.category))
            else:
                stats["skipped"] += 1

    def _known(self, names: Iterable[str]) -> Set[str]:
        known = set()
        for name in names:
            canonical = self.store.registry.canonical(name)
            if canonical is not None:
                known.add(canonical)
        return known

    def _label(self, requested: Optional[str]) -> Optional[str]:
        if requested is None:
            return None
        return self.store.registry.canonical(requested) or requested
