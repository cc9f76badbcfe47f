"""DealFeeds -- FastAPI Application Entry Point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from dealfeeds.api.v1.router import api_v1_router
from dealfeeds.config import settings
from dealfeeds.db.session import get_engine
from dealfeeds.scrapers.adapters.woot import WootFeedClient
from dealfeeds.scrapers.scheduler import RefreshScheduler
from dealfeeds.services.feed_service import DealFeedService

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _initial_refresh(service: DealFeedService) -> None:
    result = await service.refresh_all()
    if result.ok:
        logger.info(f"Initial refresh saved {result.saved_count} deals ({result.skipped_count} skipped)")
    else:
        logger.warning(f"Initial refresh failed: {result.error}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    logger.info("Starting DealFeeds API server...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Storage failures here are fatal
    service = DealFeedService(get_engine(), WootFeedClient())
    await service.startup()
    app.state.feed_service = service
    logger.info(f"Feed service ready with {len(service.get_categories())} categories")

    scheduler: Optional[RefreshScheduler] = None
    initial_refresh: Optional[asyncio.Task] = None

    # Start refresh scheduler (only in non-test environments)
    if settings.ENVIRONMENT != "test":
        logger.info("Initializing refresh scheduler...")
        scheduler = RefreshScheduler(service)
        scheduler.start()
        app.state.scheduler = scheduler

        try:
            scheduler.add_full_refresh_job(settings.UPDATE_CRON)
            if settings.CATEGORY_REFRESH_MINUTES > 0:
                scheduler.add_category_jobs(
                    settings.get_woot_categories(),
                    settings.CATEGORY_REFRESH_MINUTES,
                )
        except ValueError as e:
            logger.error(f"Invalid refresh schedule: {e}", exc_info=True)

        initial_refresh = asyncio.create_task(_initial_refresh(service))
    else:
        logger.info("Scheduler disabled (test environment)")

    yield

    # Shutdown
    logger.info("Shutting down DealFeeds API server...")

    if scheduler:
        logger.info("Stopping refresh scheduler...")
        scheduler.stop()

    # A refresh in flight is allowed to finish
    if initial_refresh is not None and not initial_refresh.done():
        await initial_refresh

    await service.shutdown()


app = FastAPI(
    title="DealFeeds API",
    description="Category-partitioned Woot deal feeds (RSS, Atom, JSON Feed)",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    base = "/api/v1/feeds"
    return {
        "name": "DealFeeds API",
        "version": "0.1.0",
        "description": "Category-partitioned Woot deal feeds",
        "feeds": {fmt: f"{base}/{fmt}" for fmt in ("rss", "atom", "json")},
        "categories": "/api/v1/categories",
        "health": "/api/v1/health",
    }
