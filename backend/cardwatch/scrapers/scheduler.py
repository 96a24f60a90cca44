"""APScheduler-based periodic watch runs.

A single interval job drives the orchestrator. APScheduler is told never to
start a second instance while one is still running, and the orchestrator
refuses overlapping runs on its own as well.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cardwatch.core.exceptions import RunAlreadyActive
from cardwatch.scrapers.orchestrator import RunSummary, ScrapeOrchestrator

logger = structlog.get_logger(__name__)


WATCH_JOB_ID = "watch_run"


class RunScheduler:
    """Schedules ScrapeOrchestrator.run() at a fixed interval."""

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """Initialize run scheduler.

        Args:
            orchestrator: Orchestrator executed by the job
            scheduler: APScheduler instance; a UTC AsyncIOScheduler by default
        """
        self.orchestrator = orchestrator
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="run_scheduler")
        self.last_summary: Optional[RunSummary] = None

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started")
        else:
            self.logger.warning("scheduler_already_running")

    def stop(self) -> None:
        """Stop the scheduler, waiting for a running job to finish."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def schedule(self, interval_minutes: int = 30, run_immediately: bool = True) -> Job:
        """Add (or replace) the periodic watch job.

        Args:
            interval_minutes: Minutes between run starts
            run_immediately: Fire the first run now instead of after one interval

        Returns:
            APScheduler Job instance
        """
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")

        now = datetime.now(timezone.utc)
        trigger = IntervalTrigger(
            minutes=interval_minutes,
            start_date=now,
            timezone="UTC",
        )
        job = self.scheduler.add_job(
            func=self._run_wrapper,
            trigger=trigger,
            id=WATCH_JOB_ID,
            name="Watch run",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now if run_immediately else now + timedelta(minutes=interval_minutes),
        )

        self.logger.info(
            "watch_job_scheduled",
            interval_minutes=interval_minutes,
            run_immediately=run_immediately,
        )
        return job

    def unschedule(self) -> bool:
        """Remove the watch job.

        Returns:
            True if the job was removed, False if it was not scheduled
        """
        if self.scheduler.get_job(WATCH_JOB_ID) is None:
            self.logger.warning("watch_job_not_found")
            return False
        self.scheduler.remove_job(WATCH_JOB_ID)
        self.logger.info("watch_job_removed")
        return True

    async def _run_wrapper(self) -> None:
        """Run once, swallowing errors so the job keeps firing."""
        try:
            self.last_summary = await self.orchestrator.run()
        except RunAlreadyActive:
            self.logger.warning("watch_run_skipped_overlap")
        except Exception as e:
            self.logger.error("watch_run_failed", error=str(e), exc_info=True)

    def get_job_status(self) -> Optional[dict]:
        job = self.scheduler.get_job(WATCH_JOB_ID)
        if job is None:
            return None
        return {
            "job_id": job.id,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
            "orchestrator_state": self.orchestrator.state.value,
        }

    def is_running(self) -> bool:
        return self.scheduler.running
