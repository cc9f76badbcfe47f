"""Data normalization utilities for raw upstream deal records.

Turns heterogeneous marketplace records into DealRecord instances. Every
missing or malformed field degrades to a default instead of raising; only a
record that is not a mapping at all is rejected.
"""

import hashlib
import html
import re
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import structlog

from dealfeeds.core.exceptions import NormalizationError
from dealfeeds.scrapers.base import DealRecord, Price, RangePrice, ScalarPrice

logger = structlog.get_logger(__name__)


DEFAULT_TITLE = "Untitled"
DEFAULT_URL = "https://www.woot.com"
ID_PREFIX = "woot-"

# Upstream field aliases, matched case-insensitively in order
FIELD_ALIASES = {
    "id": ("offerid", "offer_id", "id"),
    "title": ("title", "name"),
    "url": ("url", "link"),
    "description": ("subtitle", "description", "summary"),
    "image": ("photo", "image_url", "image"),
    "price": ("saleprice", "sale_price", "price"),
    "list_price": ("listprice", "list_price", "original_price"),
    "start": ("startdate", "start_date"),
    "end": ("enddate", "end_date"),
    "category": ("site", "category", "feed_type"),
    "tags": ("categories", "tags"),
}

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")
_WHITESPACE_RE = re.compile(r"\s+")


def canonical_category_name(name: Any) -> Optional[str]:
    """Normalize a category label for storage and matching.

    Trims, collapses inner whitespace and upper-cases the first letter so
    that "electronics" and "Electronics" name the same partition.

    Returns:
        Canonical name, or None when the label is empty or not a string
    """
    if not isinstance(name, str):
        return None
    cleaned = _WHITESPACE_RE.sub(" ", name).strip()
    if not cleaned:
        return None
    return cleaned[0].upper() + cleaned[1:]


class PriceNormalizer:
    """Price parsing and display formatting.

    Upstream prices arrive either as a scalar or as an object with
    minimum/maximum bounds. They are decoded once into ScalarPrice or
    RangePrice and only formatted afterwards.
    """

    CURRENCY_SYMBOL = "$"

    # Larger amounts are treated as garbage; they would also overflow
    # Decimal's default 28-digit context when quantized
    MAX_AMOUNT = Decimal("1e12")

    @staticmethod
    def to_decimal(raw: Any) -> Optional[Decimal]:
        """Parse a scalar price value.

        Handles:
        - 12 -> 12
        - 12.99 -> 12.99
        - "$1,234.50" -> 1234.50

        Returns:
            Non-negative finite Decimal, or None if parsing fails
        """
        if raw is None or isinstance(raw, bool):
            return None

        if isinstance(raw, (int, float)):
            cleaned = str(raw)
        elif isinstance(raw, str):
            cleaned = raw.replace("$", "").replace(",", "").strip()
        else:
            return None

        if not cleaned:
            return None

        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return None

        if not value.is_finite() or value < 0 or value > PriceNormalizer.MAX_AMOUNT:
            return None
        return value

    @classmethod
    def parse(cls, raw: Any) -> Optional[Price]:
        """Decode an upstream price into a ScalarPrice or RangePrice.

        Equal bounds collapse to a scalar, as does an object with only one
        bound. Swapped bounds are reordered.
        """
        if isinstance(raw, Mapping):
            fields = _casefold_keys(raw)
            low = cls.to_decimal(fields.get("minimum", fields.get("min")))
            high = cls.to_decimal(fields.get("maximum", fields.get("max")))

            if low is None and high is None:
                return None
            if low is None:
                low = high
            if high is None:
                high = low
            if low > high:
                low, high = high, low
            if low == high:
                return ScalarPrice(low)
            return RangePrice(low, high)

        amount = cls.to_decimal(raw)
        if amount is None:
            return None
        return ScalarPrice(amount)

    @classmethod
    def format_amount(cls, amount: Decimal) -> str:
        """Render "$10" for whole amounts and "$10.50" otherwise."""
        if amount == amount.to_integral_value():
            return f"{cls.CURRENCY_SYMBOL}{amount.quantize(Decimal(1))}"
        return f"{cls.CURRENCY_SYMBOL}{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"

    @classmethod
    def format(cls, price: Optional[Price]) -> Optional[str]:
        """Render a decoded price as a display string."""
        if price is None:
            return None
        if isinstance(price, RangePrice):
            return f"{cls.format_amount(price.minimum)} - {cls.format_amount(price.maximum)}"
        return cls.format_amount(price.amount)

    @staticmethod
    def discount(sale: Optional[Price], listed: Optional[Price]) -> Optional[str]:
        """Compute the discount percentage from the low ends of both prices.

        Returns:
            "NN%" rounded half-up, or None unless both prices are known and
            the list price is positive
        """
        if sale is None or listed is None or listed.low <= 0:
            return None
        try:
            percent = ((1 - sale.low / listed.low) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            # Near-zero list price pushes the ratio past the context precision
            return None
        return f"{percent}%"


def normalize(
    raw: Any,
    fallback_category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DealRecord:
    """Map one raw upstream record into a canonical DealRecord.

    Args:
        raw: Raw record (Woot API item or a plain dict)
        fallback_category: Category used when the record names none, usually
            the feed it was fetched from
        now: Ingestion time, defaults to the current UTC time

    Returns:
        DealRecord; category is None when no category can be determined

    Raises:
        NormalizationError: If the record is not a mapping
    """
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"expected a mapping, got {type(raw).__name__}")

    fields = _casefold_keys(raw)
    created_at = now or datetime.now(timezone.utc)

    title = _text(_pick(fields, "title"))
    url = _text(_pick(fields, "url"))
    description = _text(_pick(fields, "description")) or ""
    image_url = _text(_pick(fields, "image"))

    sale = PriceNormalizer.parse(_pick(fields, "price"))
    listed = PriceNormalizer.parse(_pick(fields, "list_price"))
    price = PriceNormalizer.format(sale)
    original_price = PriceNormalizer.format(listed)
    discount = PriceNormalizer.discount(sale, listed)

    started_at = parse_datetime(_pick(fields, "start"))
    ends_raw = _pick(fields, "end")
    ends_at = parse_datetime(ends_raw)

    category = canonical_category_name(_pick(fields, "category"))
    if category is None:
        category = canonical_category_name(fallback_category)

    record_id = _derive_id(_text(_pick(fields, "id")), url, title)

    content = render_content(
        title=title or DEFAULT_TITLE,
        url=url or DEFAULT_URL,
        description=description,
        image_url=image_url,
        price=price,
        original_price=original_price,
        discount=discount,
        tags=_tags(_pick(fields, "tags")),
        started_at=started_at,
        ends=ends_at.isoformat() if ends_at else _text(ends_raw),
    )

    return DealRecord(
        id=record_id,
        title=title or DEFAULT_TITLE,
        url=url or DEFAULT_URL,
        category=category,
        created_at=created_at,
        published_at=started_at or created_at,
        description=description,
        rendered_content=content,
        image_url=image_url,
        price=price,
        original_price=original_price,
        discount_percent=discount,
    )


def render_content(
    title: str,
    url: str,
    description: str = "",
    image_url: Optional[str] = None,
    price: Optional[str] = None,
    original_price: Optional[str] = None,
    discount: Optional[str] = None,
    tags: Optional[List[str]] = None,
    started_at: Optional[datetime] = None,
    ends: Optional[str] = None,
) -> str:
    """Build the presentation-ready HTML body of a deal."""
    esc = html.escape
    parts = [f"<h2>{esc(title)}</h2>"]

    if description:
        parts.append(f"<p>{esc(description)}</p>")
    if image_url:
        parts.append(f'<img src="{esc(image_url)}" alt="{esc(title)}" />')
    if price:
        parts.append(f"<p>Price: {esc(price)}</p>")
    if original_price:
        parts.append(f"<p>Original Price: {esc(original_price)}</p>")
    if discount:
        parts.append(f"<p>Discount: {esc(discount)}</p>")
    if tags:
        parts.append(f"<p>Categories: {esc(', '.join(tags))}</p>")
    if started_at:
        parts.append(f"<p>Started: {started_at.isoformat()}</p>")
    if ends:
        parts.append(f"<p>Ends: {esc(ends)}</p>")

    parts.append(f'<p><a href="{esc(url)}">View deal</a></p>')
    return "<div>" + "".join(parts) + "</div>"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into UTC; naive values are taken as UTC.

    Returns:
        Aware UTC datetime, or None if the value is missing, unparseable or
        falls outside the representable range once shifted to UTC
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # Upstream sometimes sends 7-digit fractions
        text = _FRACTION_RE.sub(r"\1", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("datetime_parse_failed", value=value)
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        logger.debug("datetime_out_of_range", value=value)
        return None


def _derive_id(upstream_id: Optional[str], url: Optional[str], title: Optional[str]) -> str:
    if upstream_id:
        return upstream_id
    if url and title:
        digest = hashlib.sha256(f"{url}|{title}".encode("utf-8")).hexdigest()
        return f"{ID_PREFIX}{digest[:32]}"
    # No identifying fields: uniqueness is not guaranteed across refreshes
    return f"{ID_PREFIX}{uuid.uuid4().hex}"


def _casefold_keys(raw: Mapping) -> Dict[str, Any]:
    return {str(key).casefold(): value for key, value in raw.items()}


def _pick(fields: Dict[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        value = fields.get(alias)
        if value is not None:
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _tags(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return []
