"""Feed Pydantic schemas: JSON Feed 1.1 documents and feed formats."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FeedFormat(str, Enum):
    """Output formats rendered for every category."""

    RSS = "rss"
    ATOM = "atom"
    JSON = "json"

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]


_MEDIA_TYPES = {
    FeedFormat.RSS: "application/rss+xml",
    FeedFormat.ATOM: "application/atom+xml",
    FeedFormat.JSON: "application/feed+json",
}


class JsonFeedItem(BaseModel):
    """A single JSON Feed item."""

    id: str
    url: str
    title: str
    summary: Optional[str] = None
    content_html: str
    image: Optional[str] = None
    date_published: datetime
    tags: List[str] = []


class JsonFeed(BaseModel):
    """JSON Feed 1.1 document (https://www.jsonfeed.org/version/1.1/)."""

    version: str = "https://jsonfeed.org/version/1.1"
    title: str
    home_page_url: str
    feed_url: str
    description: str
    language: Optional[str] = None
    items: List[JsonFeedItem] = Field(default_factory=list)
