"""
APScheduler configuration and job scheduling for pgbackup.

Manages:
- The cron-scheduled backup run
- The optional run on startup
- Manual triggers
- The record of the most recent run
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from pgbackup.backup.executor import BackupExecutor


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None

# Summary of the most recent run
last_run = None
_last_run_lock = threading.Lock()


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

    jobstores = {
        'default': MemoryJobStore()
    }

    # One worker: backups never overlap
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    schedule = app.config['BACKUP_CRON_SCHEDULE']
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=CronTrigger.from_crontab(schedule, timezone='UTC'),
        id=BACKUP_JOB_ID,
        name='Database Backup',
        replace_existing=True
    )
    logger.info(f"Backup cron scheduled ({schedule})")

    if app.config.get('RUN_ON_STARTUP'):
        logger.info("Running on start backup...")
        _add_one_off_job('startup')

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


def run_backup(config, legacy: bool = False) -> dict:
    """
    Run one backup and record its outcome in last_run.

    Args:
        config: Mapping with the backup settings
        legacy: Run the legacy whole-cluster backup instead

    Returns:
        Summary dict from the executor

    Raises:
        Exception: Whatever the backup raised, after it has been recorded
    """
    record = {
        'status': 'running',
        'mode': 'legacy' if legacy else 'all',
        'started_at': datetime.now(timezone.utc).isoformat(),
        'completed_at': None,
        'databases': [],
        'uploaded': [],
        'pruned': 0,
        'error_message': None
    }
    _set_last_run(record)

    try:
        executor = BackupExecutor(config)
        summary = executor.backup_old() if legacy else executor.backup()
    except Exception as e:
        _set_last_run(dict(
            record,
            status='failed',
            completed_at=datetime.now(timezone.utc).isoformat(),
            error_message=str(e)
        ))
        raise

    _set_last_run(dict(
        record,
        status='success',
        completed_at=datetime.now(timezone.utc).isoformat(),
        **summary
    ))
    return summary


def _set_last_run(record):
    global last_run
    with _last_run_lock:
        last_run = record


def get_last_run():
    """Copy of the most recent run record, or None."""
    with _last_run_lock:
        return dict(last_run) if last_run else None


def _execute_backup_wrapper():
    """
    Wrapper function for executing backups in scheduler context.

    Failures are logged and recorded; the scheduler keeps running so the
    next trigger gets its chance.
    """
    with flask_app.app_context():
        try:
            logger.info("Scheduler executing backup")
            run_backup(flask_app.config)
        except Exception as e:
            logger.error(f"Error while running backup: {e}", exc_info=True)


def _add_one_off_job(reason: str):
    # 1 second delay to avoid racing the scheduler start
    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"{reason}_{int(now.timestamp())}",
        name=f"Backup ({reason})",
        replace_existing=True
    )


def trigger_backup_now():
    """
    Manually trigger a backup immediately.

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    _add_one_off_job('manual')
    logger.info("Manually triggered backup")


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
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running


def get_scheduler_diagnostics() -> dict:
    """
    Get scheduler state and the last run for troubleshooting.

    Returns:
        Dict with scheduler state, jobs and last run info
    """
    if scheduler is None:
        return {
            'initialized': False,
            'running': False,
            'state': 'NOT_INITIALIZED',
            'jobs': [],
            'last_run': get_last_run()
        }

    return {
        'initialized': True,
        'running': scheduler.running,
        'state': str(scheduler.state),
        'jobs': get_scheduled_jobs(),
        'last_run': get_last_run()
    }
