"""Age-based retention for notifications.

Rows older than the threshold go regardless of read or digest state; their
digest queue entries go with them and email logs keep their row but lose
the link.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import InvalidArgument
from .models import DigestQueueEntry, EmailLog, Notification
from .schemas import NotificationCleanupResult, NotificationCountResult

logger = logging.getLogger(__name__)


def _cutoff(days_old: int, now: datetime | None) -> datetime:
    if isinstance(days_old, bool) or not isinstance(days_old, int) or days_old < 1:
        raise InvalidArgument("days must be a positive integer")
    return (now or datetime.now(UTC)) - timedelta(days=days_old)


def parse_days(raw: str | int | None, default: int | None = None) -> int:
    """Parse a `days` query/CLI value, raising InvalidArgument if it isn't a positive integer."""
    if raw is None or raw == "":
        return default if default is not None else settings.notification_retention_days
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise InvalidArgument("Invalid days parameter. Must be a positive integer.") from None
    if value < 1:
        raise InvalidArgument("Invalid days parameter. Must be a positive integer.")
    return value


def count_old_notifications(
    db: Session,
    days_old: int = 90,
    now: datetime | None = None,
) -> NotificationCountResult:
    """Dry run of cleanup_old_notifications: how many rows it would delete."""
    cutoff = _cutoff(days_old, now)
    count = (
        db.query(func.count(Notification.id))
        .filter(Notification.created_at < cutoff)
        .scalar()
    ) or 0
    return NotificationCountResult(count=count, cutoff_date=cutoff)


def cleanup_old_notifications(
    db: Session,
    days_old: int = 90,
    now: datetime | None = None,
) -> NotificationCleanupResult:
    """Delete notifications created before now - days_old. Caller commits."""
    cutoff = _cutoff(days_old, now)
    logger.info("Notification cleanup: deleting rows older than %d days (cutoff %s)", days_old, cutoff.isoformat())

    old_ids = select(Notification.id).where(Notification.created_at < cutoff)

    # Explicit child cleanup: not every backend enforces ON DELETE rules
    queue_deleted = (
        db.query(DigestQueueEntry)
        .filter(DigestQueueEntry.notification_id.in_(old_ids))
        .delete(synchronize_session=False)
    )
    db.query(EmailLog).filter(EmailLog.notification_id.in_(old_ids)).update(
        {EmailLog.notification_id: None}, synchronize_session=False
    )
    deleted = (
        db.query(Notification)
        .filter(Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.flush()

    logger.info(
        "Notification cleanup: deleted %d notifications (%d digest queue entries)",
        deleted,
        queue_deleted,
    )
    return NotificationCleanupResult(deleted_count=deleted, cutoff_date=cutoff)
