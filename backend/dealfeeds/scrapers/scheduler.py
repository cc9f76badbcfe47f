"""APScheduler-based refresh scheduler.

Runs the full refresh on a cron schedule and, optionally, incremental
refreshes of single categories at a fixed interval. Overlapping triggers
are resolved by the refresh service's single-flight guard.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dealfeeds.services.feed_service import DealFeedService

logger = structlog.get_logger(__name__)

FULL_REFRESH_JOB_ID = "refresh_all"


class RefreshScheduler:
    """Manages periodic refresh jobs using APScheduler.

    This scheduler:
    - Runs refresh_all() on a crontab expression
    - Optionally runs refresh_category() per category on an interval
    - Staggers category jobs to avoid firing them all at once
    - Logs job failures without stopping the scheduler
    """

    def __init__(self, service: DealFeedService):
        """Initialize refresh scheduler.

        Args:
            service: Deal feed service whose refreshes are scheduled
        """
        self.service = service
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="refresh_scheduler")
        self._job_ids: Dict[str, str] = {}  # category -> job id

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started")
        else:
            self.logger.warning("scheduler_already_running")

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def add_full_refresh_job(self, cron: str) -> Job:
        """Schedule refresh_all() with a crontab expression (UTC).

        Raises:
            ValueError: If the expression is invalid
        """
        trigger = CronTrigger.from_crontab(cron, timezone="UTC")
        job = self.scheduler.add_job(
            func=self._run_full_refresh,
            trigger=trigger,
            id=FULL_REFRESH_JOB_ID,
            name="Refresh all categories",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("full_refresh_job_added", cron=cron)
        return job

    def add_category_jobs(self, categories: Iterable[str], interval_minutes: int) -> int:
        """Schedule one incremental refresh job per category.

        Returns:
            Number of jobs added
        """
        added = 0
        for idx, category in enumerate(categories):
            # Stagger by 30 seconds per category
            if self.add_category_job(category, interval_minutes, offset_seconds=idx * 30):
                added += 1

        self.logger.info("category_jobs_loaded", count=added, interval_minutes=interval_minutes)
        return added

    def add_category_job(
        self,
        category: str,
        interval_minutes: int,
        offset_seconds: int = 0,
    ) -> Optional[Job]:
        """Add a periodic refresh job for one category.

        Returns:
            APScheduler Job instance or None if already scheduled
        """
        if category in self._job_ids:
            self.logger.warning("job_already_exists", category=category)
            return None

        start = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
        trigger = IntervalTrigger(minutes=interval_minutes, start_date=start, timezone="UTC")

        job = self.scheduler.add_job(
            func=self._run_category_refresh,
            trigger=trigger,
            args=[category],
            id=f"refresh_{self.service.category_slug(category) or category}",
            name=f"Refresh {category}",
            replace_existing=True,
            max_instances=1,  # Prevent concurrent runs of the same category
        )
        self._job_ids[category] = job.id

        self.logger.info(
            "category_job_added",
            category=category,
            interval_minutes=interval_minutes,
            offset_seconds=offset_seconds,
        )
        return job

    def remove_category_job(self, category: str) -> bool:
        """Remove the refresh job of a category.

        Returns:
            True if job was removed, False if not found
        """
        job_id = self._job_ids.pop(category, None)
        if not job_id:
            self.logger.warning("job_not_found", category=category)
            return False

        self.scheduler.remove_job(job_id)
        self.logger.info("category_job_removed", category=category)
        return True

    async def _run_full_refresh(self) -> None:
        """Job body of the cron refresh; exceptions are logged, never raised."""
        try:
            result = await self.service.refresh_all()
        except Exception as e:
            self.logger.error("refresh_job_failed", scope="all", error=str(e), exc_info=True)
            return

        self.logger.info(
            "refresh_job_finished",
            scope="all",
            saved=result.saved_count,
            skipped=result.skipped_count,
            error=result.error,
        )

    async def _run_category_refresh(self, category: str) -> None:
        try:
            result = await self.service.refresh_category(category)
        except Exception as e:
            self.logger.error("refresh_job_failed", scope=category, error=str(e), exc_info=True)
            return

        self.logger.info(
            "refresh_job_finished",
            scope=category,
            saved=result.saved_count,
            skipped=result.skipped_count,
            error=result.error,
        )

    def get_jobs_status(self) -> dict:
        """Next run time and trigger of every scheduled job."""
        jobs = {}
        for job in self.scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
        return jobs

    def is_running(self) -> bool:
        return self.scheduler.running
