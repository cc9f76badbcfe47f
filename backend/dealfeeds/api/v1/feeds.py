"""Feed document endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from dealfeeds.core.exceptions import PartitionError
from dealfeeds.dependencies import get_feed_service
from dealfeeds.schemas import FeedFormat
from dealfeeds.services.category_registry import AGGREGATE_KEY
from dealfeeds.services.feed_service import DealFeedService

router = APIRouter()


async def _feed_response(service: DealFeedService, category: str, fmt: FeedFormat) -> Response:
    try:
        document = await service.get_feed(category, fmt)
    except PartitionError as e:
        raise HTTPException(status_code=500, detail=f"Error generating {fmt.value} feed: {e.message}")

    if document is None:
        raise HTTPException(status_code=404, detail=f"Category '{category}' not found")

    headers = {}
    last_refreshed = await service.get_last_refreshed(category)
    if last_refreshed is not None:
        headers["X-Last-Refreshed"] = last_refreshed.isoformat()

    return Response(content=document, media_type=fmt.media_type, headers=headers)


@router.get("/{fmt}")
async def get_aggregate_feed(
    fmt: FeedFormat,
    service: DealFeedService = Depends(get_feed_service),
):
    """Newest deals across every category as RSS, Atom or JSON Feed."""
    return await _feed_response(service, AGGREGATE_KEY, fmt)


@router.get("/{slug}/{fmt}")
async def get_category_feed(
    slug: str,
    fmt: FeedFormat,
    service: DealFeedService = Depends(get_feed_service),
):
    """Newest deals of one category, addressed by its slug.

    The slug "all" is the aggregate feed.
    """
    if slug == AGGREGATE_KEY:
        return await _feed_response(service, AGGREGATE_KEY, fmt)

    category = service.resolve_slug(slug)
    if category is None:
        raise HTTPException(status_code=404, detail=f"Category '{slug}' not found")

    return await _feed_response(service, category, fmt)
