"""Categories API endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from dealfeeds.dependencies import get_feed_service
from dealfeeds.schemas import ApiResponse, CategoryResponse
from dealfeeds.services.feed_service import CategorySummary, DealFeedService

router = APIRouter()


def _to_response(service: DealFeedService, summary: CategorySummary) -> CategoryResponse:
    meta = service.renderer.metadata(summary.name, summary.slug)
    return CategoryResponse(
        name=summary.name,
        slug=summary.slug,
        item_count=summary.item_count,
        last_refreshed=summary.last_refreshed,
        feeds={fmt.value: url for fmt, url in meta.feed_urls.items()},
    )


@router.get("", response_model=ApiResponse)
async def list_categories(service: DealFeedService = Depends(get_feed_service)):
    """List every known category with its item count and feed links.

    Categories appear as soon as they are observed, even before they hold
    any deals.
    """
    summaries = await service.list_category_summaries()
    return ApiResponse(
        status="success",
        data=[_to_response(service, summary) for summary in summaries],
    )


@router.get("/{slug}", response_model=ApiResponse)
async def get_category(slug: str, service: DealFeedService = Depends(get_feed_service)):
    """Get one category by slug."""
    name = service.resolve_slug(slug)
    summary = await service.get_category_summary(name) if name else None
    if summary is None:
        raise HTTPException(status_code=404, detail=f"Category '{slug}' not found")

    return ApiResponse(status="success", data=_to_response(service, summary))
