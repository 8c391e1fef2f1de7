"""
APScheduler Configuration

Background job scheduler for the store back office.

Architecture:
- Jobs are registered with the @scheduled_job decorator
- Scheduler triggers jobs at configured times
- JobRunner guards each run with the persisted job_runs lock, so running
  several app instances does not duplicate work
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_guarded_job(job_name: str):
    """
    Wrapper to run a registered job from the scheduler.

    Called by APScheduler; delegates to the JobRunner which applies the
    lock and once-per-period checks.
    """
    from app.jobs.job_runner import run_scheduled_job

    try:
        result = await run_scheduled_job(job_name)
        logger.info(f"Job '{job_name}' finished with status {result.get('status')}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        # These imports trigger the @scheduled_job decorators
        from app.jobs import stock_alert_jobs  # noqa: F401
        from app.jobs import promotion_jobs  # noqa: F401

        # Daily low / out of stock digest
        scheduler.add_job(
            run_guarded_job,
            'cron',
            hour=settings.STOCK_ALERT_HOUR,
            minute=0,
            args=['stock_alert'],
            id='stock_alert',
            name='Daily Stock Alert',
            replace_existing=True,
        )

        # Deactivate promotions past their end date
        scheduler.add_job(
            run_guarded_job,
            'interval',
            minutes=settings.PROMOTION_EXPIRY_INTERVAL_MINUTES,
            args=['promotion_expiry'],
            id='promotion_expiry',
            name='Expire Promotions',
            replace_existing=True,
        )

        scheduler.start()
        logger.info(f"Background job scheduler started with {len(scheduler.get_jobs())} jobs")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
