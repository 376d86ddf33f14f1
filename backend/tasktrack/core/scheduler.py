"""
Background scheduler for periodic tasks.

This module manages background jobs that run on a schedule:
- Due-date reminders: daily at NOTIFY_HOUR:NOTIFY_MINUTE, only when mail is configured
- Cleanup orphaned attachments: every ATTACHMENT_CLEANUP_HOURS
"""

from datetime import timedelta
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from tasktrack.core.config import settings
from tasktrack.core.database import SessionLocal
from tasktrack.services.attachment_service import attachment_service
from tasktrack.services.notification_service import (
    MailTransport,
    ReminderScanner,
    build_mail_transport,
)
import logging

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def cleanup_orphaned_attachments_job():
    """
    Background job to delete stored images no task or user references.

    Replaced images are deleted inline by the services; this catches files
    left behind by requests that failed between writing and committing.
    """
    db = SessionLocal()
    try:
        grace = timedelta(minutes=settings.ATTACHMENT_CLEANUP_GRACE_MINUTES)
        orphaned = attachment_service.get_orphaned(db, grace)
        if not orphaned:
            logger.info("Cleanup job completed: No orphaned attachments found")
            return

        total_deleted = 0
        for reference, path in orphaned:
            try:
                path.unlink()
                total_deleted += 1
                logger.info(f"Deleted orphaned attachment: {reference}")
            except OSError as e:
                logger.error(f"Error deleting orphaned attachment {reference}: {str(e)}")

        logger.info(f"Cleanup job completed: Deleted {total_deleted} orphaned attachments")
    except Exception as e:
        logger.error(f"Error in cleanup_orphaned_attachments_job: {str(e)}")
    finally:
        db.close()


def start_scheduler(transport: Optional[MailTransport] = None) -> Optional[ReminderScanner]:
    """
    Start the background scheduler.

    This should be called when the FastAPI app starts, after the database
    is known to be reachable. Returns the reminder scanner, or None when
    reminders are disabled.
    """
    if scheduler.running:
        return None

    scheduler.add_job(
        cleanup_orphaned_attachments_job,
        trigger=IntervalTrigger(hours=settings.ATTACHMENT_CLEANUP_HOURS),
        id="cleanup_orphaned_attachments",
        name="Cleanup orphaned attachments",
        replace_existing=True
    )

    scanner = None
    if transport is None:
        transport = build_mail_transport(settings)
        if transport is None:
            logger.info("Email notifications are not configured. Skipping reminder job setup.")
        elif settings.MAIL_VERIFY_ON_STARTUP and not transport.verify():
            logger.warning("Email configuration test failed. Reminders will not be sent.")
            transport = None

    if transport is not None:
        scanner = ReminderScanner(SessionLocal, transport, horizon_days=settings.NOTIFY_HORIZON_DAYS)
        # max_instances=1 and coalesce stop APScheduler from stacking missed runs;
        # the scanner's own lock covers manual runs as well
        scheduler.add_job(
            scanner.run_scan,
            trigger=CronTrigger(hour=settings.NOTIFY_HOUR, minute=settings.NOTIFY_MINUTE),
            id="due_date_reminders",
            name="Due-date reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Reminder job scheduled daily at {settings.NOTIFY_HOUR:02d}:{settings.NOTIFY_MINUTE:02d}, "
            f"horizon {settings.NOTIFY_HORIZON_DAYS} day(s)"
        )

    scheduler.start()
    logger.info(
        f"Background scheduler started. Cleanup job scheduled to run every {settings.ATTACHMENT_CLEANUP_HOURS} hours."
    )
    return scanner


def stop_scheduler():
    """
    Stop the background scheduler.

    This should be called when the FastAPI app shuts down.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped.")
    scheduler.remove_all_jobs()
