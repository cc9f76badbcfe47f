"""Render deal records into RSS 2.0, Atom 1.0 and JSON Feed 1.1 documents.

Rendering is a pure function of the record list and feed metadata: the
feed-level timestamp is the newest publish date, never the wall clock, so
an unchanged record set always renders to identical bytes.
"""

import mimetypes
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Dict, List, Optional
from urllib.parse import quote

from dealfeeds.config import settings
from dealfeeds.scrapers.base import DealRecord
from dealfeeds.schemas.feed import FeedFormat, JsonFeed, JsonFeedItem


ATOM_NS = "http://www.w3.org/2005/Atom"
CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
GENERATOR = "DealFeeds"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FeedMetadata:
    """Feed-level fields for one category or the aggregate view."""

    title: str
    description: str
    home_page_url: str
    feed_urls: Dict[FeedFormat, str]
    category: Optional[str] = None


class FeedRenderer:
    """Builds all three feed documents from the same record list."""

    def __init__(
        self,
        title: str,
        description: str,
        public_base_url: str,
        site_url: str,
        language: str = "en",
    ):
        self.title = title
        self.description = description
        self.public_base_url = public_base_url.rstrip("/")
        self.site_url = site_url
        self.language = language

    @classmethod
    def from_settings(cls) -> "FeedRenderer":
        return cls(
            title=settings.FEED_TITLE,
            description=settings.FEED_DESCRIPTION,
            public_base_url=settings.PUBLIC_BASE_URL,
            site_url=settings.SITE_URL,
            language=settings.FEED_LANGUAGE,
        )

    def metadata(self, category: Optional[str] = None, slug: Optional[str] = None) -> FeedMetadata:
        """Feed metadata for a category, or for the aggregate when category is None."""
        if category is None:
            base = f"{self.public_base_url}/api/v1/feeds"
            return FeedMetadata(
                title=self.title,
                description=self.description,
                home_page_url=self.site_url,
                feed_urls={fmt: f"{base}/{fmt.value}" for fmt in FeedFormat},
            )

        base = f"{self.public_base_url}/api/v1/feeds/{slug}"
        return FeedMetadata(
            title=f"{self.title} - {category}",
            description=f"{self.description} in {category}",
            home_page_url=self.site_url,
            feed_urls={fmt: f"{base}/{fmt.value}" for fmt in FeedFormat},
            category=category,
        )

    def render_all(self, records: List[DealRecord], meta: FeedMetadata) -> Dict[FeedFormat, str]:
        """Render every format for the same records."""
        return {
            FeedFormat.RSS: self.render_rss(records, meta),
            FeedFormat.ATOM: self.render_atom(records, meta),
            FeedFormat.JSON: self.render_json(records, meta),
        }

    def render_rss(self, records: List[DealRecord], meta: FeedMetadata) -> str:
        rss = ET.Element("rss", {"version": "2.0", "xmlns:atom": ATOM_NS, "xmlns:content": CONTENT_NS})
        channel = ET.SubElement(rss, "channel")

        _text(channel, "title", meta.title)
        _text(channel, "link", meta.home_page_url)
        _text(channel, "description", meta.description)
        _text(channel, "language", self.language)
        _text(channel, "lastBuildDate", format_datetime(_updated(records)))
        _text(channel, "generator", GENERATOR)
        ET.SubElement(
            channel,
            "atom:link",
            {"href": meta.feed_urls[FeedFormat.RSS], "rel": "self", "type": FeedFormat.RSS.media_type},
        )

        for record in records:
            item = ET.SubElement(channel, "item")
            _text(item, "title", record.title)
            _text(item, "link", record.url)
            _text(item, "guid", record.id, isPermaLink="false")
            _text(item, "description", record.description or record.title)
            _text(item, "content:encoded", record.rendered_content)
            _text(item, "pubDate", format_datetime(record.published_at))
            if record.category:
                _text(item, "category", record.category)
            if record.image_url:
                ET.SubElement(
                    item,
                    "enclosure",
                    {"url": record.image_url, "length": "0", "type": _image_type(record.image_url)},
                )

        return XML_DECLARATION + ET.tostring(rss, encoding="unicode")

    def render_atom(self, records: List[DealRecord], meta: FeedMetadata) -> str:
        feed = ET.Element("feed", {"xmlns": ATOM_NS})

        _text(feed, "title", meta.title)
        _text(feed, "subtitle", meta.description)
        _text(feed, "id", meta.feed_urls[FeedFormat.ATOM])
        _text(feed, "updated", _updated(records).isoformat())
        ET.SubElement(feed, "link", {"rel": "alternate", "href": meta.home_page_url})
        ET.SubElement(
            feed,
            "link",
            {"rel": "self", "href": meta.feed_urls[FeedFormat.ATOM], "type": FeedFormat.ATOM.media_type},
        )
        author = ET.SubElement(feed, "author")
        _text(author, "name", self.title)
        _text(feed, "generator", GENERATOR)

        for record in records:
            entry = ET.SubElement(feed, "entry")
            _text(entry, "id", _entry_id(record))
            _text(entry, "title", record.title)
            ET.SubElement(entry, "link", {"rel": "alternate", "href": record.url})
            _text(entry, "published", record.published_at.isoformat())
            _text(entry, "updated", record.published_at.isoformat())
            _text(entry, "summary", record.description or record.title)
            _text(entry, "content", record.rendered_content, type="html")
            if record.category:
                ET.SubElement(entry, "category", {"term": record.category})
            if record.image_url:
                ET.SubElement(
                    entry,
                    "link",
                    {"rel": "enclosure", "href": record.image_url, "type": _image_type(record.image_url)},
                )

        return XML_DECLARATION + ET.tostring(feed, encoding="unicode")

    def render_json(self, records: List[DealRecord], meta: FeedMetadata) -> str:
        document = JsonFeed(
            title=meta.title,
            home_page_url=meta.home_page_url,
            feed_url=meta.feed_urls[FeedFormat.JSON],
            description=meta.description,
            language=self.language,
            items=[
                JsonFeedItem(
                    id=record.id,
                    url=record.url,
                    title=record.title,
                    summary=record.description or None,
                    content_html=record.rendered_content,
                    image=record.image_url,
                    date_published=record.published_at,
                    tags=[record.category] if record.category else [],
                )
                for record in records
            ],
        )
        return document.model_dump_json(indent=2, exclude_none=True)


def _text(parent: ET.Element, tag: str, value: str, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib)
    element.text = value
    return element


def _updated(records: List[DealRecord]) -> datetime:
    if not records:
        return EPOCH
    return max(record.published_at for record in records)


def _entry_id(record: DealRecord) -> str:
    return f"urn:dealfeeds:{quote(record.category or 'deal', safe='')}:{quote(record.id, safe='')}"


def _image_type(url: str) -> str:
    guessed, _ = mimetypes.guess_type(url.split("?", 1)[0])
    return guessed or "image/jpeg"
