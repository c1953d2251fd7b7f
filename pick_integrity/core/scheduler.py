"""
Automated task scheduler for pick-integrity-api.

Scheduled background jobs:
- Grading: settle picks on finished games over the lookback window
- Stats reconciliation: rebuild creator aggregates, recompute stale
  transparency scores

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pick_integrity.core.config import settings
from pick_integrity.core.logging import get_logger

logger = get_logger(__name__)


class AutomationScheduler:
    """
    Main scheduler for automated background tasks.

    All scheduled jobs are defined here with their schedules and error
    handling.
    """

    def __init__(self, grading_job=None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        self._grading_job = grading_job

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting automation scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone=settings.SCHEDULER_TIMEZONE,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job
                'misfire_grace_time': 300
            }
        )

        self._schedule_grading()
        self._schedule_stats_reconcile()

        self.scheduler.start()
        self.running = True

        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        self.running = False
        logger.info("Scheduler stopped")

    def _get_grading_job(self):
        if self._grading_job is None:
            from pick_integrity.services.grading_service import GradingJob
            self._grading_job = GradingJob()
        return self._grading_job

    def _schedule_grading(self):
        """
        Schedule: grade picks on finished games.

        Frequency: every GRADING_INTERVAL_MINUTES
        Window: the last GRADING_LOOKBACK_HOURS
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=settings.GRADING_INTERVAL_MINUTES),
            id='grading',
            name='Grade Finished Games',
        )
        async def grading_job():
            try:
                summary = await self._get_grading_job().run()
                logger.info(
                    f"Scheduled grading: {summary['graded']} graded, "
                    f"{summary['skipped']} skipped, {summary['errored']} errored"
                )
            except Exception as e:
                logger.error(f"Scheduled grading failed: {e}")

        logger.info(f"Scheduled: Grading (every {settings.GRADING_INTERVAL_MINUTES} minutes)")

    def _schedule_stats_reconcile(self):
        """
        Schedule: rebuild creator aggregates from picks.

        Frequency: every STATS_RECONCILE_MINUTES
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=settings.STATS_RECONCILE_MINUTES),
            id='stats_reconcile',
            name='Reconcile Creator Stats',
            misfire_grace_time=600
        )
        async def stats_reconcile_job():
            from pick_integrity.services.grading_service import reconcile_creator_stats
            try:
                result = await asyncio.to_thread(reconcile_creator_stats)
                logger.info(
                    f"Stats reconcile: {result['creators_reconciled']} creators, "
                    f"{result['transparency_recomputed']} scores recomputed"
                )
            except Exception as e:
                logger.error(f"Stats reconcile failed: {e}")

        logger.info(f"Scheduled: Stats reconcile (every {settings.STATS_RECONCILE_MINUTES} minutes)")

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'Pending'
            logger.info(f"  {job.name} (id={job.id}) next run: {next_run}")


# Global scheduler instance
_scheduler: Optional[AutomationScheduler] = None


async def start_scheduler():
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AutomationScheduler()
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[AutomationScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
