"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from dealfeeds.db.session import build_engine
from dealfeeds.scrapers.base import BaseDealSource
from dealfeeds.services.category_registry import CategoryRegistry
from dealfeeds.services.feed_cache import FeedCache
from dealfeeds.services.feed_renderer import FeedRenderer
from dealfeeds.services.feed_service import DealFeedService
from dealfeeds.services.partition_store import PartitionedStore


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    """Create an in-memory SQLite database for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    yield engine
    await engine.dispose()


@pytest.fixture
def registry() -> CategoryRegistry:
    return CategoryRegistry()


@pytest_asyncio.fixture
async def store(engine, registry) -> PartitionedStore:
    """Initialized partitioned store backed by the in-memory database."""
    store = PartitionedStore(engine, registry)
    await store.initialize()
    return store


@pytest.fixture
def renderer() -> FeedRenderer:
    return FeedRenderer(
        title="Woot Deals",
        description="Latest deals from Woot",
        public_base_url="http://feeds.test",
        site_url="https://www.woot.com/",
    )


@pytest.fixture
def cache(store, registry, renderer) -> FeedCache:
    """Feed cache wired to the store the way DealFeedService wires it."""
    cache = FeedCache(store, registry, renderer, page_size=50)
    store.add_write_listener(cache.invalidate)
    return cache


@pytest.fixture
def mock_source() -> AsyncMock:
    """Upstream source returning nothing unless a test says otherwise."""
    source = AsyncMock(spec=BaseDealSource)
    source.fetch_all_deals.return_value = {}
    source.fetch_category_deals.return_value = {}
    return source


@pytest_asyncio.fixture
async def feed_service(engine, mock_source, renderer) -> DealFeedService:
    """DealFeedService over the in-memory database and the mock source."""
    service = DealFeedService(
        engine,
        mock_source,
        renderer=renderer,
        seed_categories=[],
        max_items=1000,
        page_size=50,
    )
    await service.startup()
    return service


def woot_item(offer_id: str, category: str = "Tools", **overrides) -> dict:
    """Build a Woot feed API item."""
    item = {
        "OfferId": offer_id,
        "Title": f"Deal {offer_id}",
        "Url": f"https://www.woot.com/offers/{offer_id}",
        "Subtitle": f"Subtitle {offer_id}",
        "Photo": f"https://images.woot.com/{offer_id}.jpg",
        "SalePrice": {"Minimum": 10, "Maximum": 10},
        "ListPrice": {"Minimum": 20, "Maximum": 20},
        "StartDate": "2024-05-01T10:00:00Z",
        "EndDate": "2024-05-02T10:00:00Z",
        "Site": category,
        "Categories": [category],
    }
    item.update(overrides)
    return item
