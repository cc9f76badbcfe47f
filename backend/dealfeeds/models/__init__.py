"""Table definitions for DealFeeds."""

from dealfeeds.models.partition import (
    LEGACY_ITEMS_TABLE,
    build_feeds_table,
    build_partition_table,
    partition_table_name,
)

__all__ = [
    "LEGACY_ITEMS_TABLE",
    "build_feeds_table",
    "build_partition_table",
    "partition_table_name",
]
