"""DealFeeds: category-partitioned deal ingestion and syndication feeds."""

__version__ = "0.1.0"
