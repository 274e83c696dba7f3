"""In-process scheduled jobs (APScheduler, UTC).

- daily digest at `digest_send_hour`:00
- weekly digest on Monday at `digest_send_hour`:00
- notification retention at 02:00
- expired report sweep every `report_sweep_interval_minutes`
- closed email rate-limit windows dropped hourly

The same work is reachable through /api/cron/* for external cron and through
the CLI. Job functions never raise: a failed run is logged and the next
tick tries again.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .database.base import session_scope
from .integrations.blob_store import BlobStore, create_blob_store
from .integrations.email import EmailClient, create_email_client
from .notifications.cleanup import cleanup_old_notifications
from .notifications.digest import run_digest
from .notifications.service import email_rate_limiter
from .reports.service import cleanup_expired_reports

logger = logging.getLogger(__name__)

DAILY_DIGEST_JOB_ID = "daily_digest"
WEEKLY_DIGEST_JOB_ID = "weekly_digest"
NOTIFICATION_RETENTION_JOB_ID = "notification_retention"
REPORT_SWEEP_JOB_ID = "report_sweep"
RATE_LIMIT_SWEEP_JOB_ID = "rate_limit_sweep"


def digest_job(frequency: str, email_client: EmailClient | None = None) -> None:
    try:
        client = email_client or create_email_client()
        with session_scope() as db:
            result = run_digest(db, client, frequency)
        logger.info(
            "Scheduled %s digest: %d sent, %d notifications, %d error(s)",
            frequency,
            result.digests_sent,
            result.notifications_processed,
            len(result.errors),
        )
    except Exception:
        logger.exception("Scheduled %s digest failed", frequency)


def retention_job() -> None:
    try:
        with session_scope() as db:
            result = cleanup_old_notifications(db, settings.notification_retention_days)
        logger.info("Scheduled notification cleanup: %d deleted", result.deleted_count)
    except Exception:
        logger.exception("Scheduled notification cleanup failed")


def report_sweep_job(store: BlobStore | None = None) -> None:
    try:
        result = cleanup_expired_reports(store or create_blob_store("reports"))
        if result.errors:
            logger.warning("Scheduled report sweep finished with errors: %s", result.errors)
    except Exception:
        logger.exception("Scheduled report sweep failed")


def rate_limit_sweep_job() -> None:
    try:
        removed = email_rate_limiter.cleanup_expired()
        if removed:
            logger.debug("Dropped %d closed email rate-limit window(s)", removed)
    except Exception:
        logger.exception("Rate-limit sweep failed")


def create_scheduler(
    email_client: EmailClient | None = None,
    report_store: BlobStore | None = None,
) -> BackgroundScheduler:
    """Build (not start) the scheduler with all maintenance jobs registered."""
    scheduler = BackgroundScheduler(timezone="UTC")
    hour = settings.digest_send_hour
    scheduler.add_job(
        digest_job,
        "cron",
        hour=hour,
        minute=0,
        args=["daily", email_client],
        id=DAILY_DIGEST_JOB_ID,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        digest_job,
        "cron",
        day_of_week="mon",
        hour=hour,
        minute=0,
        args=["weekly", email_client],
        id=WEEKLY_DIGEST_JOB_ID,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        retention_job,
        "cron",
        hour=2,
        minute=0,
        id=NOTIFICATION_RETENTION_JOB_ID,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        report_sweep_job,
        "interval",
        minutes=settings.report_sweep_interval_minutes,
        args=[report_store],
        id=REPORT_SWEEP_JOB_ID,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        rate_limit_sweep_job,
        "interval",
        hours=1,
        id=RATE_LIMIT_SWEEP_JOB_ID,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
