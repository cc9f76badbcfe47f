"""Base deal source interface and the canonical deal record.

Every upstream marketplace client inherits from BaseDealSource and hands
back raw records grouped by category; the normalizer turns each raw record
into a DealRecord.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import structlog


RawRecord = Dict[str, Any]
RawFeed = Dict[str, List[RawRecord]]


@dataclass(frozen=True)
class ScalarPrice:
    """A single upstream price."""

    amount: Decimal

    @property
    def low(self) -> Decimal:
        return self.amount


@dataclass(frozen=True)
class RangePrice:
    """An upstream price given as a {minimum, maximum} range."""

    minimum: Decimal
    maximum: Decimal

    @property
    def low(self) -> Decimal:
        return self.minimum


Price = Union[ScalarPrice, RangePrice]


@dataclass
class DealRecord:
    """Canonical deal stored in a category partition and rendered into feeds."""

    id: str
    title: str
    url: str
    category: Optional[str]
    created_at: datetime
    published_at: datetime
    description: str = ""
    rendered_content: str = ""
    image_url: Optional[str] = None
    price: Optional[str] = None
    original_price: Optional[str] = None
    discount_percent: Optional[str] = None

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.id:
            raise ValueError("id is required")
        if not self.title:
            raise ValueError("title is required")
        if not self.url:
            raise ValueError("url is required")


class BaseDealSource(ABC):
    """Abstract base class for upstream deal sources.

    Sources only fetch; retry, auth and rate limiting live in the
    concrete client.
    """

    source_name: str = ""  # Must be overridden in subclass (e.g., "woot")

    def __init__(self):
        """Initialize the source logger."""
        self.logger = structlog.get_logger(source=self.source_name)

    @abstractmethod
    async def fetch_all_deals(self) -> RawFeed:
        """Fetch every current deal, grouped by category name.

        Returns:
            Mapping of category name to the raw upstream records

        Raises:
            SourceError: If the upstream cannot be reached
        """
        pass

    async def fetch_category_deals(self, category: str) -> RawFeed:
        """Fetch the current deals of one category.

        The default implementation fetches everything and keeps the
        matching key (compared case-insensitively).

        Args:
            category: Category name as requested by the caller

        Returns:
            Mapping with at most one entry
        """
        self.logger.debug("category_fetch_via_full_fetch", category=category)
        wanted = category.strip().casefold()
        feed = await self.fetch_all_deals()
        return {name: records for name, records in feed.items() if name.strip().casefold() == wanted}

    async def close(self) -> None:
        """Release any client resources."""
        pass
