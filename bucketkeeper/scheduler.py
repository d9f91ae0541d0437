"""
APScheduler configuration for bucketkeeper.

Manages:
- The daily backup purge (cron expression from PURGE_SCHEDULE_CRON)
- The summary of the most recent purge run
"""

import logging
import threading
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger


logger = logging.getLogger(__name__)

PURGE_JOB_ID = 'backup_purge'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None

_last_summary = None
_summary_lock = threading.Lock()


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Never run two purges at once
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    scheduler.add_job(
        func=_run_purge_wrapper,
        trigger=CronTrigger.from_crontab(app.config['PURGE_SCHEDULE_CRON'], timezone='UTC'),
        id=PURGE_JOB_ID,
        name='Daily Backup Purge',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def run_purge(app, dry_run: Optional[bool] = None) -> dict:
    """
    Run one purge over the whole cluster and remember its summary.

    Args:
        app: Flask app instance
        dry_run: Overrides PURGE_DRY_RUN when given

    Returns:
        Summary dict from PurgeEngine.enforce_all()
    """
    from bucketkeeper import create_purge_engine

    engine = create_purge_engine(app, dry_run=dry_run)
    summary = engine.enforce_all()
    record_summary(summary)
    return summary


def _run_purge_wrapper(dry_run: Optional[bool] = None):
    """
    Run the purge in scheduler context.

    Errors are logged; the scheduler keeps running.
    """
    with flask_app.app_context():
        try:
            logger.info("Scheduler executing backup purge")
            summary = run_purge(flask_app, dry_run=dry_run)
            logger.info(
                f"Scheduled purge finished: {summary['backups_deleted']} deleted, "
                f"{len(summary['errors'])} errors"
            )
        except Exception as e:
            logger.exception(f"Scheduled purge failed: {e}")


def record_summary(summary: dict):
    global _last_summary
    with _summary_lock:
        _last_summary = summary


def get_last_summary() -> Optional[dict]:
    with _summary_lock:
        return _last_summary


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
