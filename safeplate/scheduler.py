"""Scheduled maintenance of the offline cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import SafeplateConfig
    from .offline import OfflineCache
    from .services.profile import UserProfileService

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs periodic offline-cache jobs.

    Uses APScheduler for cron-based scheduling.
    """

    def __init__(
        self,
        config: SafeplateConfig,
        cache: OfflineCache,
        profile_service: UserProfileService | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            config: SafeplateConfig instance.
            cache: Offline cache the jobs maintain.
            profile_service: Source of the signed-in user's restrictions,
                needed only when restriction sync is enabled.

        Raises:
            ImportError: If apscheduler is not installed.
        """
        try:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            from apscheduler.triggers.cron import CronTrigger
        except ImportError:
            raise ImportError("apscheduler is required: pip install 'apscheduler<4'")

        self._config = config
        self._cache = cache
        self._profile_service = profile_service
        self._scheduler = AsyncIOScheduler()
        self._CronTrigger = CronTrigger
        self._running = False

    def setup_jobs(self) -> None:
        """Register scheduled jobs based on config."""
        sched = self._config.scheduler

        trigger = self._parse_cron(sched.cache_cleanup_schedule)
        self._scheduler.add_job(
            self._job_cleanup_cache,
            trigger=trigger,
            id="cleanup_offline_cache",
            name="Offline cache expiry",
            replace_existing=True,
        )
        logger.info("Registered cache cleanup job: %s", sched.cache_cleanup_schedule)

        if sched.sync_restrictions:
            trigger = self._parse_cron(sched.sync_schedule)
            self._scheduler.add_job(
                self._job_sync_restrictions,
                trigger=trigger,
                id="sync_restrictions",
                name="Restriction sync",
                replace_existing=True,
            )
            logger.info("Registered restriction sync job: %s", sched.sync_schedule)

    def start(self) -> None:
        """Start the scheduler."""
        self.setup_jobs()
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running

    def get_jobs(self) -> list[dict]:
        """Return info about scheduled jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": str(next_run) if next_run else None,
            })
        return jobs

    def _parse_cron(self, expr: str):
        """Parse a cron expression into a CronTrigger."""
        parts = expr.split()
        if len(parts) == 5:
            return self._CronTrigger(
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
            )
        raise ValueError(f"Invalid cron expression: {expr}")

    async def _job_cleanup_cache(self) -> None:
        """Evict expired products from the offline cache."""
        logger.info("Running offline cache cleanup...")
        try:
            removed = await self._cache.cleanup_expired()
            if removed > 0:
                logger.info("Removed %d expired cached products", removed)
        except Exception:
            logger.exception("Offline cache cleanup failed")

    async def _job_sync_restrictions(self) -> None:
        """Copy the signed-in user's active restrictions into the offline cache."""
        if self._profile_service is None:
            logger.warning("Restriction sync enabled but no profile service configured")
            return
        logger.info("Running restriction sync...")
        try:
            await self._profile_service.load()
            if self._profile_service.error:
                logger.warning("Restriction sync skipped: %s", self._profile_service.error)
                return
            names = self._profile_service.active_restriction_names()
            await self._cache.cache_user_restrictions(names)
            logger.info("Synced %d restrictions to the offline cache", len(names))
        except Exception:
            logger.exception("Restriction sync failed")
