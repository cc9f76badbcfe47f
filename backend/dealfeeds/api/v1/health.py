"""Health check and debug refresh endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request

from dealfeeds.config import settings
from dealfeeds.db.utils import check_database_health
from dealfeeds.dependencies import get_feed_service
from dealfeeds.schemas import ApiResponse, HealthCheckResponse, RefreshResult
from dealfeeds.services.category_registry import AGGREGATE_KEY
from dealfeeds.services.feed_service import DealFeedService

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, service: DealFeedService = Depends(get_feed_service)):
    """Return service health status.

    Reports database connectivity, the number of known categories and
    stored deals, and when the newest refresh happened.
    """
    db = await check_database_health(service.store.engine)
    db_status = "ok" if db["healthy"] else f"error: {db.get('error')}"

    items = 0
    if db["healthy"]:
        items = await service.get_item_count(AGGREGATE_KEY)

    scheduler = getattr(request.app.state, "scheduler", None)

    return HealthCheckResponse(
        status="ok" if db["healthy"] else "degraded",
        database=db_status,
        categories=len(service.get_categories()),
        items=items,
        last_refreshed=await service.get_last_refreshed(AGGREGATE_KEY) if db["healthy"] else None,
        refresh_in_progress=service.refresher.in_progress,
        scheduler=scheduler.get_jobs_status() if scheduler is not None else None,
    )


def _require_debug() -> None:
    if not settings.DEBUG:
        raise HTTPException(status_code=404, detail="Not found")


@router.post("/debug/refresh", response_model=ApiResponse[RefreshResult])
async def debug_refresh_all(service: DealFeedService = Depends(get_feed_service)):
    """Debug endpoint to run a full refresh immediately."""
    _require_debug()
    result = await service.refresh_all()
    return ApiResponse(status="success" if result.ok else "error", data=result)


@router.post("/debug/refresh/{slug}", response_model=ApiResponse[RefreshResult])
async def debug_refresh_category(slug: str, service: DealFeedService = Depends(get_feed_service)):
    """Debug endpoint to refresh one category.

    Accepts a known slug or a category name that has not been seen yet.
    """
    _require_debug()
    category = service.resolve_slug(slug) or slug
    result = await service.refresh_category(category)
    if result.not_found:
        raise HTTPException(status_code=404, detail=f"Category '{slug}' not found")
    return ApiResponse(status="success" if result.ok else "error", data=result)
