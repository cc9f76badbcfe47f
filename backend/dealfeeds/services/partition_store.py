"""Durable per-category deal partitions.

Each category gets its own table, created lazily the first time a deal
referencing it is upserted. A registry table records which partitions exist
and when each category was last refreshed, so partitions are found again
after a restart instead of being recreated.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import MetaData, Table, delete, func, inspect, select, text, union_all, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from dealfeeds.core.exceptions import PartitionError
from dealfeeds.models.partition import (
    LEGACY_ITEMS_TABLE,
    build_feeds_table,
    build_partition_table,
    partition_table_name,
)
from dealfeeds.scrapers.base import DealRecord
from dealfeeds.scrapers.utils.normalizer import (
    DEFAULT_TITLE,
    DEFAULT_URL,
    canonical_category_name,
    parse_datetime,
    render_content,
)
from dealfeeds.services.category_registry import CategoryRegistry

logger = structlog.get_logger(__name__)

# Renamed to this once its rows are copied into partitions
MIGRATED_LEGACY_TABLE = "legacy_items_migrated"

WriteListener = Callable[[str], None]


class PartitionedStore:
    """Service owning every stored DealRecord.

    Handles partition creation, upsert keyed by deal id, newest-first
    queries, retention-bounded eviction and refresh timestamps. Listeners
    registered with add_write_listener() are called synchronously with the
    category name after every successful write.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        registry: CategoryRegistry,
        seed_categories: Iterable[str] = (),
    ):
        """Initialize partitioned store.

        Args:
            engine: Async SQLAlchemy engine (SQLite or PostgreSQL)
            registry: Category registry shared with the feed cache
            seed_categories: Categories whose partitions are created on startup
        """
        self.engine = engine
        self.registry = registry
        self.metadata = MetaData()
        self.feeds = build_feeds_table(self.metadata)
        self._seed_categories = list(seed_categories)
        self._tables: Dict[str, Table] = {}  # display name -> partition table
        self._listeners: List[WriteListener] = []
        self.logger = logger.bind(service="partition_store")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the registry table and rehydrate persisted partitions.

        Raises:
            SQLAlchemyError: If the storage engine cannot be initialized
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(self.feeds.create, checkfirst=True)
            result = await conn.execute(
                select(self.feeds.c.id, self.feeds.c.slug, self.feeds.c.table_name).order_by(self.feeds.c.id)
            )
            rows = result.all()

        for row in rows:
            self.registry.restore(row.id, row.slug)
            name = self.registry.canonical(row.id)
            self._tables[name] = self._table(row.table_name)

        self.logger.info("partitions_loaded", count=len(rows))

        for name in self._seed_categories:
            await self.ensure_partition(name)

    async def dispose(self) -> None:
        """Release the engine's connections."""
        await self.engine.dispose()

    def add_write_listener(self, listener: WriteListener) -> None:
        """Register a callback invoked with the category after each write."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def ensure_partition(self, name: str) -> str:
        """Register a category and create its partition if missing.

        Args:
            name: Category name in any casing

        Returns:
            Canonical category name

        Raises:
            ValueError: If the name is empty or reserved
            PartitionError: If the partition cannot be created
        """
        self.registry.ensure(name)
        category = self.registry.canonical(name)

        if category in self._tables:
            return category

        slug = self.registry.slug_of(category)
        table = self._table(partition_table_name(slug))

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(table.create, checkfirst=True)
                stmt = self._insert(self.feeds).values(
                    id=category,
                    slug=slug,
                    table_name=table.name,
                    last_updated=None,
                )
                await conn.execute(stmt.on_conflict_do_nothing(index_elements=[self.feeds.c.id]))
        except SQLAlchemyError as e:
            self.logger.error("partition_create_failed", category=category, error=str(e), exc_info=True)
            raise PartitionError(category, str(e)) from e

        self._tables[category] = table
        self.logger.info("partition_created", category=category, table=table.name)
        return category

    async def upsert(self, record: DealRecord) -> bool:
        """Insert or replace a deal in its category partition.

        The first created_at of a deal is kept; every other column is
        replaced (last write wins).

        Args:
            record: Normalized deal

        Returns:
            True if saved, False if the record has no determinable category

        Raises:
            PartitionError: If the write fails
        """
        if not record.category:
            self.logger.warning("upsert_skipped_no_category", deal_id=record.id, title=record.title[:50])
            return False

        try:
            category = await self.ensure_partition(record.category)
        except ValueError as e:
            self.logger.warning("upsert_skipped_invalid_category", deal_id=record.id, error=str(e))
            return False

        table = self._tables[category]
        values = {
            "id": record.id,
            "title": record.title,
            "url": record.url,
            "description": record.description,
            "content": record.rendered_content,
            "image_url": record.image_url,
            "price": record.price,
            "original_price": record.original_price,
            "discount": record.discount_percent,
            "category": category,
            "created_at": _to_utc(record.created_at),
            "published_at": _to_utc(record.published_at),
        }
        stmt = self._insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={key: stmt.excluded[key] for key in values if key not in ("id", "created_at")},
        )

        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error("upsert_failed", category=category, deal_id=record.id, error=str(e), exc_info=True)
            raise PartitionError(category, str(e)) from e

        self._notify(category)
        return True

    async def evict_excess(self, max_total_items: int) -> Dict[str, int]:
        """Trim every category to an even share of the total budget.

        The per-category budget is max_total_items // number of known
        categories. Rows beyond the budget are deleted oldest publish date
        first; categories under budget are left alone.

        Returns:
            Number of deleted rows per category that lost rows
        """
        categories = sorted(self.registry.list())
        if not categories:
            return {}

        budget = max(max_total_items, 0) // len(categories)
        deleted: Dict[str, int] = {}

        for category in categories:
            table = self._tables.get(category)
            if table is None:
                continue

            try:
                async with self.engine.begin() as conn:
                    total = (await conn.execute(select(func.count()).select_from(table))).scalar_one()
                    excess = total - budget
                    if excess <= 0:
                        continue

                    oldest = (
                        select(table.c.id)
                        .order_by(table.c.published_at.asc(), table.c.id.desc())
                        .limit(excess)
                    )
                    result = await conn.execute(delete(table).where(table.c.id.in_(oldest)))
            except SQLAlchemyError as e:
                self.logger.error("eviction_failed", category=category, error=str(e), exc_info=True)
                raise PartitionError(category, str(e)) from e

            deleted[category] = result.rowcount
            self.logger.info(
                "partition_trimmed",
                category=category,
                budget=budget,
                removed=result.rowcount,
            )
            self._notify(category)

        return deleted

    async def record_refresh_timestamp(self, category: str) -> Optional[datetime]:
        """Set the last-refreshed time of a category to now.

        Reflects that a refresh was attempted, whether or not rows changed.

        Returns:
            The recorded time, or None for an unknown category
        """
        name = self.registry.canonical(category)
        if name is None or name not in self._tables:
            self.logger.warning("refresh_timestamp_unknown_category", category=category)
            return None

        now = datetime.now(timezone.utc)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(update(self.feeds).where(self.feeds.c.id == name).values(last_updated=now))
        except SQLAlchemyError as e:
            raise PartitionError(name, str(e)) from e
        return now

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_refresh_timestamp(self, category: str) -> Optional[datetime]:
        """Return when a category was last refreshed, if ever."""
        name = self.registry.canonical(category)
        if name is None:
            return None

        async with self.engine.connect() as conn:
            result = await conn.execute(select(self.feeds.c.last_updated).where(self.feeds.c.id == name))
            value = result.scalar_one_or_none()
        return _from_db(value) if value is not None else None

    async def query(self, category: Optional[str] = None, limit: int = 50) -> List[DealRecord]:
        """Return deals newest publish date first.

        Args:
            category: Category name in any casing, or None for every partition
            limit: Maximum number of deals

        Returns:
            At most `limit` deals ordered by published_at descending, ties
            broken by id; empty for an unknown category

        Raises:
            PartitionError: If a partition cannot be read
        """
        if limit <= 0:
            return []

        if category is None:
            tables = [self._tables[name] for name in sorted(self._tables)]
        else:
            name = self.registry.canonical(category)
            tables = [self._tables[name]] if name in self._tables else []

        if not tables:
            return []

        if len(tables) == 1:
            source = tables[0]
        else:
            source = union_all(*(select(*t.c) for t in tables)).subquery("deals")

        stmt = (
            select(*source.c)
            .order_by(source.c.published_at.desc(), source.c.id.asc(), source.c.category.asc())
            .limit(limit)
        )

        try:
            async with self.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            self.logger.error("query_failed", category=category, error=str(e), exc_info=True)
            raise PartitionError(category or "all", str(e)) from e

        return [_row_to_record(row) for row in rows]

    async def count(self, category: Optional[str] = None) -> int:
        """Count stored deals in one category or across all of them."""
        if category is None:
            tables = list(self._tables.values())
        else:
            name = self.registry.canonical(category)
            tables = [self._tables[name]] if name in self._tables else []

        total = 0
        try:
            async with self.engine.connect() as conn:
                for table in tables:
                    total += (await conn.execute(select(func.count()).select_from(table))).scalar_one()
        except SQLAlchemyError as e:
            raise PartitionError(category or "all", str(e)) from e
        return total

    # ------------------------------------------------------------------
    # Legacy migration
    # ------------------------------------------------------------------

    async def migrate_legacy_items(self) -> int:
        """Copy rows of the old single `items` table into partitions.

        The legacy table stored every deal with its category in
        `feed_type`. After copying, it is renamed so the migration runs
        only once.

        Returns:
            Number of migrated deals, 0 when there is no legacy table
        """
        async with self.engine.connect() as conn:
            has_legacy = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(LEGACY_ITEMS_TABLE))
            if not has_legacy:
                self.logger.debug("legacy_migration_not_needed")
                return 0
            rows = (await conn.execute(text(f"SELECT * FROM {LEGACY_ITEMS_TABLE}"))).mappings().all()

        self.logger.info("legacy_migration_started", rows=len(rows))

        migrated = 0
        for row in rows:
            record = _legacy_row_to_record(row)
            if record is None:
                self.logger.warning("legacy_row_skipped", row_id=row.get("id"))
                continue
            if await self.upsert(record):
                migrated += 1

        async with self.engine.begin() as conn:
            await conn.execute(text(f"ALTER TABLE {LEGACY_ITEMS_TABLE} RENAME TO {MIGRATED_LEGACY_TABLE}"))

        self.logger.info("legacy_migration_completed", migrated=migrated, skipped=len(rows) - migrated)
        return migrated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _table(self, table_name: str) -> Table:
        existing = self.metadata.tables.get(table_name)
        if existing is not None:
            return existing
        return build_partition_table(table_name, self.metadata)

    def _insert(self, table: Table):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    def _notify(self, category: str) -> None:
        for listener in self._listeners:
            listener(category)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_db(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_record(row) -> DealRecord:
    return DealRecord(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        category=row["category"],
        created_at=_from_db(row["created_at"]),
        published_at=_from_db(row["published_at"]),
        description=row["description"] or "",
        rendered_content=row["content"] or "",
        image_url=row["image_url"],
        price=row["price"],
        original_price=row["original_price"],
        discount_percent=row["discount"],
    )


def _legacy_row_to_record(row) -> Optional[DealRecord]:
    category = canonical_category_name(row.get("feed_type") or row.get("site"))
    if category is None or not row.get("id"):
        return None

    now = datetime.now(timezone.utc)
    created_at = parse_datetime(row.get("created_at")) or now
    title = row.get("title") or DEFAULT_TITLE
    url = row.get("url") or DEFAULT_URL

    return DealRecord(
        id=row["id"],
        title=title,
        url=url,
        category=category,
        created_at=created_at,
        published_at=parse_datetime(row.get("published_at")) or created_at,
        description=row.get("description") or "",
        rendered_content=row.get("content") or render_content(title=title, url=url),
        image_url=row.get("image_url") or None,
        price=row.get("price") or None,
        original_price=row.get("original_price") or None,
        discount_percent=row.get("discount") or None,
    )
