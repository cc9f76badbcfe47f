"""Woot developer API client.

Fetches current offers per category from the Woot feed endpoint
(GET {base}/feed/{Category}, authenticated with an x-api-key header).
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import httpx
import structlog

from dealfeeds.config import settings
from dealfeeds.core.exceptions import SourceError
from dealfeeds.scrapers.base import BaseDealSource, RawFeed, RawRecord
from dealfeeds.scrapers.utils.rate_limiter import DomainRateLimiter
from dealfeeds.scrapers.utils.retry import http_retry


logger = structlog.get_logger()


class WootFeedClient(BaseDealSource):
    """Woot feed API source.

    A full refresh fetches every configured category concurrently. One
    failing category is logged and left out of the result; only when every
    category fails is the whole fetch reported as an error.
    """

    source_name = "woot"

    FEED_ENDPOINT = "/feed/{category}"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        categories: Optional[List[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        """Initialize Woot client.

        Args:
            base_url: API base URL, defaults to WOOT_API_BASE_URL
            api_key: API key, defaults to WOOT_API_KEY
            categories: Feeds fetched on a full refresh, defaults to WOOT_CATEGORIES
            transport: Optional httpx transport (used by tests)
            timeout: Request timeout in seconds
        """
        super().__init__()
        self.base_url = (base_url or settings.WOOT_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.WOOT_API_KEY
        self.categories = categories if categories is not None else settings.get_woot_categories()
        self.rate_limiter = DomainRateLimiter()
        self._domain = urlparse(self.base_url).netloc
        self._transport = transport
        self._timeout = timeout

        if not self.api_key:
            logger.warning("woot_api_key_missing")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-api-key": self.api_key,
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def fetch_all_deals(self) -> RawFeed:
        """Fetch offers of every configured category.

        Returns:
            Mapping of category name to raw Woot items

        Raises:
            SourceError: If every category request failed
        """
        logger.info("woot_fetch_all_started", categories=len(self.categories))

        async with self._client() as client:
            results = await asyncio.gather(
                *(self._fetch_safely(client, category) for category in self.categories)
            )

        feed: RawFeed = {}
        failures = 0
        for category, items in results:
            if items is None:
                failures += 1
                continue
            feed[category] = items

        if self.categories and failures == len(self.categories):
            raise SourceError(self.source_name, "every category request failed")

        logger.info(
            "woot_fetch_all_complete",
            categories=len(feed),
            failed=failures,
            items=sum(len(items) for items in feed.values()),
        )
        return feed

    async def fetch_category_deals(self, category: str) -> RawFeed:
        """Fetch offers of one category.

        Raises:
            SourceError: If the request fails
        """
        async with self._client() as client:
            try:
                items = await self._fetch_offers(client, category)
            except (httpx.HTTPError, ValueError) as e:
                raise SourceError(self.source_name, f"{category}: {e}") from e

        return {category: items}

    async def _fetch_safely(
        self, client: httpx.AsyncClient, category: str
    ) -> Tuple[str, Optional[List[RawRecord]]]:
        try:
            return category, await self._fetch_offers(client, category)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("woot_category_fetch_failed", category=category, error=str(e))
            return category, None

    async def _fetch_offers(self, client: httpx.AsyncClient, category: str) -> List[RawRecord]:
        data = await self._call_feed_api(client, category)
        items = data.get("Items") if isinstance(data, dict) else None

        if not isinstance(items, list):
            logger.warning("woot_feed_without_items", category=category)
            return []

        logger.info("woot_category_fetched", category=category, count=len(items))
        return items

    @http_retry
    async def _call_feed_api(self, client: httpx.AsyncClient, category: str) -> Dict[str, Any]:
        """Make a call to the Woot feed endpoint.

        Raises:
            httpx.HTTPStatusError: If API returns error status
            httpx.TimeoutException: If request times out
            httpx.NetworkError: If network error occurs
            ValueError: If the body is not JSON
        """
        await self.rate_limiter.acquire(self._domain)

        path = self.FEED_ENDPOINT.format(category=quote(category, safe=""))
        logger.debug("woot_feed_api_call", category=category, path=path)

        response = await client.get(path)

        if response.status_code == 429:
            logger.warning("woot_rate_limit_hit", category=category)

        response.raise_for_status()
        return response.json()
