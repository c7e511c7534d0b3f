"""
Poll Scheduler
==============

Runs the ingestion pipeline on a fixed interval (hourly in production).

    scheduler = PollScheduler(pipeline, interval_seconds=3600)
    scheduler.start(run_immediately=True)
    ...
    scheduler.stop()

OVERLAPPING CYCLES:
------------------
If a cycle is still running when the next trigger fires, that trigger is
skipped (max_instances=1, coalesce=True). Each cycle is also bounded by the
pipeline's cycle_timeout, which must be shorter than the interval.

Tests don't need a scheduler at all: they call pipeline.run_cycle() directly.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from savana.models import CycleResult
from savana.services.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class PollScheduler:
    """Owns the interval job that drives poll cycles."""

    JOB_ID = "poll_cycle"

    def __init__(
        self,
        pipeline: IngestionPipeline,
        interval_seconds: int = 3600,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self.scheduler.running and self.scheduler.get_job(self.JOB_ID) is not None

    @property
    def next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    async def _run_cycle(self) -> CycleResult:
        return await self.pipeline.run_cycle()

    def start(self, run_immediately: bool = False):
        """
        Start polling. Must be called from inside a running event loop.

        Args:
            run_immediately: Fire the first cycle now instead of one interval from now
        """
        if self.running:
            logger.warning("Poll scheduler already running")
            return

        logger.info(f"Starting poll job (interval: {self.interval_seconds}s)")
        job_options = {}
        if run_immediately:
            # an explicit None would add the job paused
            job_options["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            self._run_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        if not self.scheduler.running:
            self.scheduler.start()

    def stop(self):
        """Stop polling. A cycle already in flight is left to finish."""
        if self.scheduler.get_job(self.JOB_ID) is not None:
            self.scheduler.remove_job(self.JOB_ID)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Poll scheduler stopped")
