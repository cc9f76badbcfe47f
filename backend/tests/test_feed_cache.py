"""Tests for feed rendering and the feed cache."""

import json
import xml.etree.ElementTree as ET
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from jsonschema import validate

from dealfeeds.core.exceptions import PartitionError
from dealfeeds.schemas.feed import FeedFormat
from dealfeeds.services.feed_cache import FeedCache
from dealfeeds.services.feed_renderer import ATOM_NS, CONTENT_NS
from dealfeeds.scrapers.utils.normalizer import normalize

from conftest import NOW, woot_item


ATOM = f"{{{ATOM_NS}}}"

JSON_FEED_SCHEMA = {
    "type": "object",
    "required": ["version", "title", "items"],
    "properties": {
        "version": {"const": "https://jsonfeed.org/version/1.1"},
        "title": {"type": "string"},
        "home_page_url": {"type": "string"},
        "feed_url": {"type": "string"},
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "url", "title", "content_html", "date_published"],
                "properties": {
                    "id": {"type": "string"},
                    "url": {"type": "string"},
                    "title": {"type": "string"},
                    "content_html": {"type": "string"},
                    "image": {"type": "string"},
                    "date_published": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}


async def ingest(store, *items):
    for item in items:
        await store.upsert(normalize(item, now=NOW))


def parse_xml(document: str) -> ET.Element:
    return ET.fromstring(document.encode("utf-8"))


# ============================================================================
# TESTS: RENDERING
# ============================================================================

class TestFeedRendering:
    """Tests for the documents produced through the cache."""

    async def test_rss_items_carry_deal_fields(self, store, cache):
        await ingest(store, woot_item("a"))

        root = parse_xml(await cache.get("Tools", FeedFormat.RSS))
        channel = root.find("channel")

        assert channel.findtext("title") == "Woot Deals - Tools"
        [item] = channel.findall("item")
        assert item.findtext("title") == "Deal a"
        assert item.findtext("link") == "https://www.woot.com/offers/a"
        assert item.findtext("guid") == "a"
        assert item.findtext("description") == "Subtitle a"
        assert "Price: $10" in item.findtext(f"{{{CONTENT_NS}}}encoded")
        assert item.findtext("pubDate") == "Wed, 01 May 2024 10:00:00 +0000"
        assert item.find("enclosure").get("url") == "https://images.woot.com/a.jpg"

    async def test_atom_entries_carry_deal_fields(self, store, cache):
        await ingest(store, woot_item("a"))

        root = parse_xml(await cache.get("tools", FeedFormat.ATOM))

        assert root.tag == f"{ATOM}feed"
        assert root.findtext(f"{ATOM}updated") == "2024-05-01T10:00:00+00:00"
        [entry] = root.findall(f"{ATOM}entry")
        assert entry.findtext(f"{ATOM}title") == "Deal a"
        assert entry.findtext(f"{ATOM}id") == "urn:dealfeeds:Tools:a"
        assert entry.find(f"{ATOM}link").get("href") == "https://www.woot.com/offers/a"

    async def test_json_feed_validates(self, store, cache):
        await ingest(store, woot_item("a"), woot_item("b", StartDate="2024-05-01T11:00:00Z"))

        document = json.loads(await cache.get("Tools", FeedFormat.JSON))

        validate(instance=document, schema=JSON_FEED_SCHEMA)
        assert [item["id"] for item in document["items"]] == ["b", "a"]
        assert document["feed_url"] == "http://feeds.test/api/v1/feeds/tools/json"
        assert document["items"][0]["image"] == "https://images.woot.com/b.jpg"

    async def test_aggregate_feed_has_plain_title(self, store, cache):
        await ingest(store, woot_item("a", category="Tools"), woot_item("b", category="Garden"))

        document = json.loads(await cache.get("all", FeedFormat.JSON))

        assert document["title"] == "Woot Deals"
        assert {item["id"] for item in document["items"]} == {"a", "b"}

    async def test_empty_category_renders_empty_feed(self, store, cache):
        await store.ensure_partition("Garden")

        root = parse_xml(await cache.get("Garden", FeedFormat.RSS))
        assert root.find("channel").findall("item") == []

    async def test_scenario_prices_render(self, store, cache):
        await ingest(
            store,
            {"id": "a", "category": "Tools", "price": {"minimum": 10, "maximum": 10}},
            {"id": "b", "category": "Tools", "price": {"minimum": 8, "maximum": 12}},
        )

        assert await store.count("Tools") == 2
        records = {r.id: r for r in await store.query("Tools", 10)}
        assert records["a"].price == "$10"
        assert records["b"].price == "$8 - $12"


# ============================================================================
# TESTS: CACHE
# ============================================================================

class TestFeedCache:
    """Tests for FeedCache."""

    async def test_repeated_reads_are_byte_identical(self, store, cache):
        await ingest(store, woot_item("a"), woot_item("b"))

        for fmt in FeedFormat:
            first = await cache.get("Tools", fmt)
            second = await cache.get("Tools", fmt)
            assert first == second

    async def test_regenerated_output_is_byte_identical(self, store, cache):
        """Rebuilding an unchanged record set yields the same bytes."""
        await ingest(store, woot_item("a"))
        first = await cache.get("Tools", FeedFormat.ATOM)

        cache.clear()
        second = await cache.get("Tools", FeedFormat.ATOM)

        assert first == second

    async def test_cache_hit_does_not_query_store(self, store, cache):
        await ingest(store, woot_item("a"))
        await cache.get("Tools", FeedFormat.RSS)

        store.query = AsyncMock(side_effect=AssertionError("store read on cache hit"))

        assert await cache.get("Tools", FeedFormat.JSON)

    async def test_all_formats_built_together(self, store, cache):
        await ingest(store, woot_item("a"))
        await cache.get("Tools", FeedFormat.RSS)

        entry = cache.get_entry("Tools")
        assert set(entry.documents) == set(FeedFormat)
        assert entry.item_count == 1

    async def test_upsert_invalidates_category_feed(self, store, cache):
        await ingest(store, woot_item("a"))
        await cache.get("Tools", FeedFormat.JSON)

        await ingest(store, woot_item("new-deal"))

        assert cache.get_entry("Tools") is None
        document = json.loads(await cache.get("Tools", FeedFormat.JSON))
        assert "new-deal" in {item["id"] for item in document["items"]}

    async def test_upsert_invalidates_aggregate_feed(self, store, cache):
        await ingest(store, woot_item("a", category="Tools"), woot_item("b", category="Garden"))
        await cache.get("all", FeedFormat.RSS)
        await cache.get("Garden", FeedFormat.RSS)

        await ingest(store, woot_item("g", category="Tools"))

        assert cache.get_entry("all") is None
        # Other categories keep their entries
        assert cache.get_entry("Garden") is not None

    async def test_eviction_invalidates_feed(self, store, cache):
        for i in range(3):
            await ingest(store, woot_item(f"t{i}", StartDate=(NOW + timedelta(minutes=i)).isoformat()))
        await cache.get("Tools", FeedFormat.RSS)

        await store.evict_excess(1)

        assert cache.get_entry("Tools") is None
        root = parse_xml(await cache.get("Tools", FeedFormat.RSS))
        assert [item.findtext("guid") for item in root.find("channel").findall("item")] == ["t2"]

    async def test_unknown_category_returns_none(self, cache):
        assert await cache.get("Nope", FeedFormat.RSS) is None

    async def test_page_size_limits_items(self, store, registry, renderer):
        small = FeedCache(store, registry, renderer, page_size=2)
        for i in range(4):
            await ingest(store, woot_item(f"t{i}", StartDate=(NOW + timedelta(minutes=i)).isoformat()))

        document = json.loads(await small.get("Tools", FeedFormat.JSON))
        assert [item["id"] for item in document["items"]] == ["t3", "t2"]

    async def test_write_during_rebuild_is_not_cached(self, store, cache):
        """A rebuild that overlaps an invalidation serves its result but keeps nothing."""
        await ingest(store, woot_item("a"))
        real_query = store.query

        async def query_with_concurrent_write(category, limit):
            records = await real_query(category, limit)
            cache.invalidate("Tools")
            return records

        store.query = AsyncMock(side_effect=query_with_concurrent_write)

        document = await cache.get("Tools", FeedFormat.RSS)

        assert "<guid isPermaLink=\"false\">a</guid>" in document
        assert cache.get_entry("Tools") is None

        store.query = real_query
        await cache.get("Tools", FeedFormat.RSS)
        assert cache.get_entry("Tools") is not None

    async def test_rebuild_error_propagates(self, store, cache):
        await ingest(store, woot_item("a"))
        store.query = AsyncMock(side_effect=PartitionError("Tools", "disk on fire"))

        with pytest.raises(PartitionError):
            await cache.get("Tools", FeedFormat.RSS)
        assert cache.get_entry("Tools") is None
