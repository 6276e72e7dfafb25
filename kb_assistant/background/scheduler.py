"""
Background scheduler for periodic knowledge-base sync.

Uses APScheduler to start a background sync on a crontab schedule
(KB_SYNC_CRON, e.g. "0 3 * * *"). Empty KB_SYNC_CRON = no scheduled sync.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from kb_assistant.config import get_settings

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "kb_sync_job"

# Singleton scheduler instance
scheduler = AsyncIOScheduler(timezone=get_settings().APP_TIMEZONE)


def run_scheduled_sync():
    """Job callback: start a background sync unless one is already running."""
    # Import here to avoid circular imports
    from kb_assistant.core.dependencies import get_sync_orchestrator

    launch = get_sync_orchestrator().start_background()
    if launch.accepted:
        logger.info("⏰ Scheduled sync started.")
    else:
        logger.info(f"⏰ Scheduled sync skipped: {launch.message}")


def schedule_sync(cron_expr: str | None):
    """Add, update, or remove the periodic sync job.

    Args:
        cron_expr: Five-field crontab expression, or empty/None to disable.

    Raises:
        ValueError: If the expression is not valid crontab syntax.
    """
    trigger = None
    if cron_expr:
        trigger = CronTrigger.from_crontab(cron_expr, timezone=get_settings().APP_TIMEZONE)

    # Pending jobs are not de-duplicated by replace_existing until start()
    if scheduler.get_job(SYNC_JOB_ID):
        scheduler.remove_job(SYNC_JOB_ID)
        logger.info(f"🔕 Removed scheduled job: {SYNC_JOB_ID}")
    if trigger is None:
        return

    scheduler.add_job(
        func=run_scheduled_sync,
        trigger=trigger,
        id=SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"🔔 Scheduled knowledge-base sync: '{cron_expr}'")


def init_scheduler():
    """Register the sync job and start the scheduler.

    Called during FastAPI lifespan startup.
    """
    settings = get_settings()
    if not settings.KB_SYNC_CRON:
        logger.info("📅 Scheduled sync disabled (KB_SYNC_CRON is empty)")
        return

    schedule_sync(settings.KB_SYNC_CRON)
    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info(f"📅 {job.id}: next run at {job.next_run_time}")


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("📅 Scheduler shut down.")
