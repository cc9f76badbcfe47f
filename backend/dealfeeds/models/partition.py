"""Table definitions for the category registry and per-category partitions.

Partitions are created at runtime, one table per category, so they are
declared as SQLAlchemy Core tables built by a factory instead of mapped
classes.
"""

from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, Text

# Legacy single-table layout, kept only so old databases can be migrated
LEGACY_ITEMS_TABLE = "items"

PARTITION_PREFIX = "items_"


def build_feeds_table(metadata: MetaData) -> Table:
    """Registry table: one row per category with its partition and last refresh."""
    return Table(
        "feeds",
        metadata,
        Column("id", String(200), primary_key=True, comment="Category display name"),
        Column("slug", String(200), nullable=False, unique=True, comment="URL-friendly identifier"),
        Column("table_name", String(255), nullable=False, comment="Partition table name"),
        Column("last_updated", DateTime(timezone=True), nullable=True, comment="Last refresh attempt"),
    )


def partition_table_name(slug: str) -> str:
    """Derive the partition table name from a category slug.

    Examples:
        "home-kitchen" -> "items_home_kitchen"
    """
    return PARTITION_PREFIX + slug.replace("-", "_")


def build_partition_table(table_name: str, metadata: MetaData) -> Table:
    """Deal partition for one category, keyed by the stable deal id."""
    return Table(
        table_name,
        metadata,
        Column("id", String(255), primary_key=True, comment="Stable upstream offer id"),
        Column("title", String(500), nullable=False),
        Column("url", String(2000), nullable=False),
        Column("description", Text, nullable=True),
        Column("content", Text, nullable=True, comment="Pre-rendered HTML body"),
        Column("image_url", String(2000), nullable=True),
        Column("price", String(64), nullable=True),
        Column("original_price", String(64), nullable=True),
        Column("discount", String(16), nullable=True),
        Column("category", String(200), nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("published_at", DateTime(timezone=True), nullable=False),
        Index(f"idx_{table_name}_published_at", "published_at"),
    )
