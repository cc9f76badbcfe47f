"""Tests for refresh orchestration and the DealFeedService facade."""

import asyncio
from datetime import datetime, timezone

import pytest

from dealfeeds.core.exceptions import PartitionError, SourceError
from dealfeeds.schemas.feed import FeedFormat
from dealfeeds.schemas.refresh import CATEGORY_NOT_FOUND, REFRESH_IN_PROGRESS
from dealfeeds.services.refresh_service import RefreshService

from conftest import woot_item


# ============================================================================
# TESTS: REFRESH SERVICE
# ============================================================================

class TestRefreshAll:
    """Tests for RefreshService.refresh_all()."""

    async def test_refresh_saves_every_category(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {
            "Tools": [woot_item("t1"), woot_item("t2")],
            "Garden": [woot_item("g1", category="Garden")],
        }
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        assert result.ok
        assert result.saved_count == 3
        assert result.skipped_count == 0
        assert result.category is None
        assert store.registry.list() == {"Tools", "Garden"}

    async def test_refresh_records_timestamps(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t1")]}
        service = RefreshService(mock_source, store, max_items=100)

        before = datetime.now(timezone.utc)
        await service.refresh_all()

        stamp = await store.get_refresh_timestamp("Tools")
        assert stamp is not None
        assert stamp >= before.replace(microsecond=0)

    async def test_bad_records_are_skipped_and_counted(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {
            "Tools": [woot_item("t1"), "garbage", None, {"Title": "No category", "Site": "   "}],
        }
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        # The record without its own category falls back to the feed name
        assert result.saved_count == 2
        assert result.skipped_count == 2

    async def test_record_without_any_category_is_skipped(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {"   ": [{"OfferId": "x", "Title": "Lost"}]}
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        assert result.saved_count == 0
        assert result.skipped_count == 1
        assert len(store.registry) == 0

    async def test_out_of_range_start_date_does_not_abort_batch(self, store, mock_source):
        """A start date that overflows once shifted to UTC still gets stored."""
        mock_source.fetch_all_deals.return_value = {
            "Tools": [
                woot_item("t1"),
                woot_item("t2", StartDate="9999-12-31T23:00:00-05:00"),
                woot_item("t3"),
            ],
        }
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        assert result.ok
        assert result.saved_count == 3
        ids = {r.id for r in await store.query("Tools", 10)}
        assert ids == {"t1", "t2", "t3"}

    async def test_refresh_evicts_beyond_budget(self, store, mock_source):
        items = [woot_item(f"t{i}", StartDate=f"2024-05-01T1{i}:00:00Z") for i in range(6)]
        mock_source.fetch_all_deals.return_value = {"Tools": items}
        service = RefreshService(mock_source, store, max_items=4)

        result = await service.refresh_all()

        assert result.saved_count == 6
        assert await store.count("Tools") == 4
        assert [r.id for r in await store.query("Tools", 10)] == ["t5", "t4", "t3", "t2"]

    async def test_repeated_refresh_is_idempotent(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t1"), woot_item("t2")]}
        service = RefreshService(mock_source, store, max_items=100)

        await service.refresh_all()
        await service.refresh_all()

        assert await store.count("Tools") == 2

    async def test_fetch_failure_is_reported(self, store, mock_source):
        mock_source.fetch_all_deals.side_effect = SourceError("woot", "every category request failed")
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        assert not result.ok
        assert result.saved_count == 0
        assert "every category request failed" in result.error

    async def test_partition_error_reports_partial_progress(self, store, mock_source):
        mock_source.fetch_all_deals.return_value = {
            "Tools": [woot_item("t1"), woot_item("t2"), woot_item("t3")],
        }
        real_upsert = store.upsert
        calls = {"n": 0}

        async def flaky_upsert(record):
            calls["n"] += 1
            if calls["n"] == 2:
                raise PartitionError("Tools", "disk full")
            return await real_upsert(record)

        store.upsert = flaky_upsert
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_all()

        assert result.saved_count == 1
        assert "disk full" in result.error
        assert await store.count("Tools") == 1

    async def test_concurrent_refresh_is_rejected(self, store, mock_source):
        """A refresh requested while one runs returns without writing."""
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return {"Tools": [woot_item("t1")]}

        mock_source.fetch_all_deals.side_effect = slow_fetch
        service = RefreshService(mock_source, store, max_items=100)

        first = asyncio.create_task(service.refresh_all())
        while not service.in_progress:
            await asyncio.sleep(0)

        second = await service.refresh_all()
        other = await service.refresh_category("Tools")
        release.set()
        first_result = await first

        assert second.error == REFRESH_IN_PROGRESS
        assert second.saved_count == 0
        assert other.error == REFRESH_IN_PROGRESS
        assert first_result.saved_count == 1
        assert mock_source.fetch_all_deals.await_count == 1
        assert not service.in_progress


class TestRefreshCategory:
    """Tests for RefreshService.refresh_category()."""

    async def test_unknown_category_is_not_found(self, store, mock_source):
        """A never-seen category absent from the fetch creates nothing."""
        mock_source.fetch_category_deals.return_value = {"Unknown": []}
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_category("Unknown")

        assert result.not_found
        assert result.error == CATEGORY_NOT_FOUND
        assert result.saved_count == 0
        assert "Unknown" not in store.registry
        assert await store.count("Unknown") == 0

    async def test_new_category_from_fetch_is_created(self, store, mock_source):
        mock_source.fetch_category_deals.return_value = {
            "electronics": [woot_item("e1", category="electronics")],
        }
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_category("electronics")

        assert result.ok
        assert result.category == "Electronics"
        assert result.saved_count == 1
        [record] = await store.query("Electronics", 10)
        assert record.id == "e1"

    async def test_known_empty_category_records_timestamp(self, store, mock_source):
        await store.ensure_partition("Tools")
        mock_source.fetch_category_deals.return_value = {"Tools": []}
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_category("tools")

        assert result.ok
        assert result.category == "Tools"
        assert result.saved_count == 0
        assert await store.get_refresh_timestamp("Tools") is not None

    async def test_other_categories_in_fetch_are_ignored(self, store, mock_source):
        mock_source.fetch_category_deals.return_value = {
            "Tools": [woot_item("t1")],
            "Garden": [woot_item("g1", category="Garden")],
        }
        service = RefreshService(mock_source, store, max_items=100)

        result = await service.refresh_category("Tools")

        assert result.saved_count == 1
        assert "Garden" not in store.registry


# ============================================================================
# TESTS: FACADE
# ============================================================================

class TestDealFeedService:
    """Tests for DealFeedService."""

    async def test_new_category_appears_in_categories(self, feed_service, mock_source):
        mock_source.fetch_all_deals.return_value = {"electronics": [woot_item("e1", category="electronics")]}

        await feed_service.refresh_all()

        assert feed_service.get_categories() == ["Electronics"]
        [record] = await feed_service.store.query("Electronics", 10)
        assert record.id == "e1"

    async def test_refresh_invalidates_served_feed(self, feed_service, mock_source):
        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t1")]}
        await feed_service.refresh_all()
        before = await feed_service.get_feed("Tools", FeedFormat.RSS)

        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t2")]}
        await feed_service.refresh_all()
        after = await feed_service.get_feed("Tools", FeedFormat.RSS)

        assert "<guid isPermaLink=\"false\">t2</guid>" not in before
        assert "<guid isPermaLink=\"false\">t2</guid>" in after

    async def test_item_counts(self, feed_service, mock_source):
        mock_source.fetch_all_deals.return_value = {
            "Tools": [woot_item("t1"), woot_item("t2")],
            "Garden": [woot_item("g1", category="Garden")],
        }
        await feed_service.refresh_all()

        assert await feed_service.get_item_count("Tools") == 2
        assert await feed_service.get_item_count("all") == 3
        assert await feed_service.get_item_count("Nope") == 0
        assert "Nope" not in feed_service.get_categories()

    async def test_last_refreshed_of_aggregate_is_newest(self, feed_service, mock_source):
        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t1")]}
        await feed_service.refresh_all()

        tools = await feed_service.get_last_refreshed("Tools")
        assert tools is not None
        assert await feed_service.get_last_refreshed("all") == tools
        assert await feed_service.get_last_refreshed("Nope") is None

    async def test_slug_round_trip(self, feed_service, mock_source):
        mock_source.fetch_all_deals.return_value = {"Home & Kitchen": [woot_item("h1", category="Home & Kitchen")]}
        await feed_service.refresh_all()

        slug = feed_service.category_slug("home & kitchen")
        assert slug == "home-kitchen"
        assert feed_service.resolve_slug(slug) == "Home & Kitchen"
        assert feed_service.category_slug("all") == "all"
        assert feed_service.resolve_slug("missing") is None

    async def test_unknown_feed_is_none(self, feed_service):
        assert await feed_service.get_feed("Nope", FeedFormat.JSON) is None

    async def test_aggregate_cannot_be_refreshed_as_category(self, feed_service, mock_source):
        result = await feed_service.refresh_category("all")

        assert result.not_found
        mock_source.fetch_category_deals.assert_not_awaited()

    async def test_shutdown_closes_source(self, feed_service, mock_source):
        await feed_service.shutdown()
        mock_source.close.assert_awaited_once()

    @pytest.mark.parametrize("name", ["Tools", "tools", "TOOLS"])
    async def test_category_summary(self, feed_service, mock_source, name):
        mock_source.fetch_all_deals.return_value = {"Tools": [woot_item("t1")]}
        await feed_service.refresh_all()

        summary = await feed_service.get_category_summary(name)

        assert summary.name == "Tools"
        assert summary.slug == "tools"
        assert summary.item_count == 1
        assert summary.last_refreshed is not None
