"""APScheduler job configuration for the daily pipeline run."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from mercado_radar.config import get_settings

logger = logging.getLogger(__name__)


async def run_daily_pipeline():
    """Scheduled entry point: one run for today, report logged."""
    from mercado_radar.pipeline import run_pipeline

    report = await run_pipeline()
    if report.success:
        logger.info("Scheduled run for %s succeeded.", report.target_date)
    else:
        logger.error("Scheduled run for %s failed: %s", report.target_date, report.error)
    return report


def start_scheduler() -> AsyncIOScheduler:
    """Configure and start the APScheduler."""
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone=settings.timezone)

    scheduler.add_job(
        run_daily_pipeline,
        CronTrigger(hour=settings.scheduler_hour, minute=settings.scheduler_minute),
        id="daily_pipeline",
        name="Scrape, extract and persist today's promotions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    return scheduler
