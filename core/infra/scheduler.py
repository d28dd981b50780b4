"""
Scheduler infrastructure for running periodic crawls.
"""

import logging
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from croniter import croniter


logger = logging.getLogger(__name__)

# start-time randomization window for cron jobs, either side of the slot
RANDOMIZE_SECONDS = 30 * 60


class Scheduler:
    """Async task scheduler wrapper around APScheduler.

    Jobs live in memory: they are bound methods of objects built at process
    start and are registered again on every start-up.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,  # seconds
        }
        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self.timezone = timezone
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info(f"Scheduler started ({self.timezone})")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    @staticmethod
    def validate_cron_expression(cron_expression: str) -> bool:
        """Validate a five-field cron expression using croniter."""
        if not cron_expression or len(cron_expression.split()) != 5:
            return False
        return croniter.is_valid(cron_expression)

    def add_cron_job(
        self,
        func: Callable,
        cron_expression: str,
        job_id: Optional[str] = None,
        randomize: bool = False,
        **kwargs,
    ) -> None:
        """Add a job that runs on a cron schedule.

        With ``randomize`` each fire time is shifted by up to 30 minutes
        either way.
        """
        if not self.validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        trigger = CronTrigger.from_crontab(
            cron_expression,
            timezone=self.timezone,
        )
        if randomize:
            trigger.jitter = RANDOMIZE_SECONDS

        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            **kwargs,
        )

        logger.info(
            f"Added cron job: {job_id or func.__name__} ({cron_expression}"
            f"{', randomized ±30 min' if randomize else ''})"
        )

    def list_jobs(self) -> Dict[str, Any]:
        """List all scheduled jobs."""
        jobs = {}
        for job in self._scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
        return jobs
