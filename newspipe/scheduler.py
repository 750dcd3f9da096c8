"""Periodic triggers for the scrape and analysis jobs."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import ScheduleConfig
from .jobs import JobController, JobKind

LOGGER = logging.getLogger(__name__)


def build_scheduler(schedule: ScheduleConfig) -> AsyncIOScheduler:
    job_defaults = {
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 60,
    }
    return AsyncIOScheduler(job_defaults=job_defaults, timezone=schedule.timezone)


def register_schedules(
    scheduler: AsyncIOScheduler,
    controller: JobController,
    schedule: ScheduleConfig,
) -> None:
    """Add one cron job per job kind; each only calls the controller's trigger."""

    async def scheduled_scrape() -> None:
        result = controller.trigger_scrape("cron")
        if not result.started:
            LOGGER.warning("Scheduled scrape skipped: already running since %s", result.running_since or "unknown")

    async def scheduled_analysis() -> None:
        result = controller.trigger_analysis("cron")
        if not result.started:
            LOGGER.warning("Scheduled analysis skipped: already running since %s", result.running_since or "unknown")

    for kind, func, crontab in (
        (JobKind.SCRAPE, scheduled_scrape, schedule.scrape_crontab),
        (JobKind.ANALYSIS, scheduled_analysis, schedule.analysis_crontab),
    ):
        trigger = CronTrigger.from_crontab(crontab, timezone=schedule.timezone)
        scheduler.add_job(func, trigger=trigger, id=f"{kind.value}-cron", replace_existing=True)
        LOGGER.info("Scheduled %s job with crontab '%s' (%s)", kind.value, crontab, schedule.timezone)


__all__ = ["build_scheduler", "register_schedules"]
