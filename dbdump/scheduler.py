"""
APScheduler configuration for scheduled backup runs.

Runs a backup on a crontab schedule until the process is stopped. The
configuration file is re-read before every run, so edits take effect
without a restart.
"""

import logging
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from dbdump.config import ConfigError, load_config
from dbdump.backup.executor import LockError, execute_backup


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None

JOB_ID = 'dbdump_backup'


def run_scheduled_backup(config_path: Optional[str] = None, force: Optional[bool] = None):
    """
    Execute one scheduled backup run.

    Configuration and lock errors are logged so that the scheduler keeps
    running and retries at the next fire time.
    """
    try:
        config = load_config(config_path)
        result = execute_backup(config, force=force)
        logger.info(f"Scheduled backup finished: {result}")
    except ConfigError as e:
        logger.error(f"Scheduled backup aborted, configuration error: {e}")
    except LockError as e:
        logger.error(f"Scheduled backup skipped: {e}")


def init_scheduler(cron: str, config_path: Optional[str] = None, force: Optional[bool] = None):
    """
    Initialize and configure APScheduler.

    Args:
        cron: Crontab expression (five fields, e.g. '30 2 * * *')
        config_path: Configuration file to load on every run
        force: Overrides LOCAL.FORCE when given

    Returns:
        The scheduler instance

    Raises:
        ConfigError: If the crontab expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    try:
        trigger = CronTrigger.from_crontab(cron)
    except ValueError as e:
        raise ConfigError(f"Invalid schedule [{cron}]: {e}")

    job_defaults = {
        'coalesce': True,  # Combine missed runs into one
        'max_instances': 1,  # Never overlap runs
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults)
    scheduler.add_job(
        func=run_scheduled_backup,
        trigger=trigger,
        kwargs={'config_path': config_path, 'force': force},
        id=JOB_ID,
        name='Scheduled Backup Run',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() or an interrupt.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    job = scheduler.get_job(JOB_ID)
    if job is not None:
        logger.info(f"Scheduler starting: {job.name} ({job.trigger})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
