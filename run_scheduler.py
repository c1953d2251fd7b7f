#!/usr/bin/env python3
"""
Standalone runner for the pick-integrity-api automation scheduler.

Runs the grading and stats reconciliation jobs outside the API process. It
can be run via systemd, supervisor, or directly.

Usage:
    python run_scheduler.py                    # Run in foreground
    python run_scheduler.py --trigger grading  # Run one job now and exit
"""
import asyncio
import argparse
import signal
import sys
from typing import Optional

from pick_integrity.core.scheduler import AutomationScheduler
from pick_integrity.core.config import settings
from pick_integrity.core.logging import configure_logging, get_logger

configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
logger = get_logger(__name__)


class SchedulerRunner:
    """Runner for the automation scheduler."""

    def __init__(self):
        self.scheduler: Optional[AutomationScheduler] = None
        self.shutdown = asyncio.Event()

    async def start(self):
        """Start the scheduler and run until a shutdown signal arrives."""
        logger.info("Starting scheduler runner...")

        self.scheduler = AutomationScheduler()
        await self.scheduler.start()

        logger.info("Scheduler is now running. Press Ctrl+C to stop")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        await self.shutdown.wait()

        await self.scheduler.stop()
        logger.info("Scheduler runner stopped")

    def _set_shutdown(self):
        logger.info("Shutdown signal received")
        self.shutdown.set()


async def run_trigger_job(job_id: str) -> bool:
    """Run one job immediately, without starting the scheduler."""
    if job_id == "grading":
        from pick_integrity.services.grading_service import GradingJob
        summary = await GradingJob().run()
        logger.info(
            f"Grading: {summary['graded']} graded, {summary['skipped']} skipped, "
            f"{summary['errored']} errored"
        )
        return summary["errored"] == 0

    if job_id == "stats_reconcile":
        from pick_integrity.services.grading_service import reconcile_creator_stats
        result = await asyncio.to_thread(reconcile_creator_stats)
        logger.info(f"Stats reconcile: {result}")
        return True

    logger.error(f"Job '{job_id}' not found (expected grading or stats_reconcile)")
    return False


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Run the pick-integrity-api automation scheduler'
    )
    parser.add_argument(
        '--trigger',
        type=str,
        metavar='JOB_ID',
        help='Run a single job (grading, stats_reconcile) and exit'
    )
    args = parser.parse_args()

    if args.trigger:
        return 0 if asyncio.run(run_trigger_job(args.trigger)) else 1

    try:
        asyncio.run(SchedulerRunner().start())
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down...")
    except Exception as e:
        logger.error(f"Scheduler error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
