"""FastAPI dependency injection providers."""

from fastapi import HTTPException, Request, status

from dealfeeds.services.feed_service import DealFeedService


def get_feed_service(request: Request) -> DealFeedService:
    """Return the process-wide DealFeedService created at startup.

    Usage:
        @router.get("/categories")
        async def list_categories(service: DealFeedService = Depends(get_feed_service)):
            return service.get_categories()
    """
    service = getattr(request.app.state, "feed_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feed service is not initialized",
        )
    return service
