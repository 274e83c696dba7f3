"""Notification creation and per-user email dispatch.

Every project event creates an in-app Notification. Whether it also becomes
an email, a digest queue entry, or nothing is decided here from the
recipient's preferences:

- the per-type toggle is off -> nothing
- digest frequency "never" -> nothing
- "daily"/"weekly" -> queued for the next digest send time in the user's timezone
- "immediate" -> sent now, subject to a per-user hourly cap

Large expense alerts skip both the digest queue and the hourly cap.
"""

import logging
import threading
import uuid
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ..auth.models import User
from ..config import settings
from ..integrations.email import EmailClient
from ..projects.models import Project
from .digest import unsubscribe_url
from .models import (
    DigestFrequency,
    DigestQueueEntry,
    EmailLog,
    EmailStatus,
    Notification,
    NotificationPreference,
    NotificationType,
)
from .schemas import DispatchOutcome
from .templates import build_notification_email

logger = logging.getLogger(__name__)

# Preference column consulted for each event type; None means always on
TOGGLE_BY_TYPE: dict[str, str | None] = {
    NotificationType.COST_ADDED: "email_on_cost",
    NotificationType.LARGE_EXPENSE: "email_on_large_expense",
    NotificationType.DOCUMENT_UPLOADED: "email_on_document",
    NotificationType.TIMELINE_EVENT: "email_on_timeline",
    NotificationType.COMMENT_ADDED: "email_on_comment",
    NotificationType.PARTNER_INVITED: None,
}


class EmailRateLimiter:
    """Fixed-window counter of immediate emails per user, held in memory.

    The first email opens a window of `window` length; up to `max_per_window`
    emails are allowed until it closes. Large expense alerts bypass the cap
    and are not counted.
    """

    def __init__(self, max_per_window: int = 10, window: timedelta = timedelta(hours=1)):
        self.max_per_window = max_per_window
        self.window = window
        self._windows: dict[str, tuple[int, datetime]] = {}
        self._lock = threading.Lock()

    def can_send(self, user_id, is_large_expense: bool = False, now: datetime | None = None) -> bool:
        """Check the cap and, when allowed, count the email."""
        if is_large_expense:
            return True
        now = now or datetime.now(UTC)
        key = str(user_id)
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or now > entry[1]:
                self._windows[key] = (1, now + self.window)
                return True
            count, reset_at = entry
            if count >= self.max_per_window:
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def current_count(self, user_id, now: datetime | None = None) -> tuple[int, datetime | None]:
        now = now or datetime.now(UTC)
        entry = self._windows.get(str(user_id))
        if entry is None or now > entry[1]:
            return 0, None
        return entry

    def reset(self, user_id) -> None:
        with self._lock:
            self._windows.pop(str(user_id), None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Drop closed windows. Returns how many were removed."""
        now = now or datetime.now(UTC)
        with self._lock:
            expired = [k for k, (_c, reset_at) in self._windows.items() if now > reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)


email_rate_limiter = EmailRateLimiter(max_per_window=settings.immediate_email_limit_per_hour)


def _zone(timezone: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.error("Invalid timezone %r, falling back to UTC", timezone)
        return ZoneInfo("UTC")


def next_digest_time(frequency: str, timezone: str | None, now: datetime | None = None) -> datetime:
    """Next digest send time (UTC) for a user in `timezone`.

    daily: the next `digest_send_hour`:00 local strictly after now.
    weekly: `digest_send_hour`:00 local on the first Monday after today.
    """
    now = now or datetime.now(UTC)
    tz = _zone(timezone)
    local_now = now.astimezone(tz)
    send_at = local_now.replace(hour=settings.digest_send_hour, minute=0, second=0, microsecond=0)

    if frequency == DigestFrequency.WEEKLY:
        days_ahead = 7 - local_now.weekday()  # Monday is 0; today never counts
        send_at = send_at + timedelta(days=days_ahead)
    elif send_at <= local_now:
        send_at = send_at + timedelta(days=1)

    # zoneinfo resolves the offset from wall time, so DST shifts are honoured
    return send_at.astimezone(UTC)


def get_preferences(db: Session, user_id: uuid.UUID) -> NotificationPreference:
    """Stored preferences, or an unsaved instance holding the defaults."""
    prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if prefs is not None:
        return prefs
    return NotificationPreference(
        user_id=user_id,
        email_on_cost=True,
        email_on_large_expense=True,
        email_on_document=True,
        email_on_timeline=True,
        email_on_comment=True,
        email_digest_frequency=DigestFrequency.IMMEDIATE.value,
        timezone="UTC",
    )


def create_notification(
    db: Session,
    *,
    user_id: uuid.UUID,
    notification_type: str,
    entity_type: str,
    entity_id: str,
    message: str,
    project_id: uuid.UUID | None = None,
) -> Notification:
    """Record an in-app notification. Entry point for project event handlers; flushes, the caller commits."""
    notification = Notification(
        user_id=user_id,
        type=str(notification_type),
        entity_type=str(entity_type),
        entity_id=str(entity_id),
        project_id=project_id,
        message=message,
    )
    db.add(notification)
    db.flush()
    return notification


def _type_enabled(prefs: NotificationPreference, notification_type: str) -> bool:
    column = TOGGLE_BY_TYPE.get(notification_type)
    if column is None:
        return True
    return bool(getattr(prefs, column))


def dispatch_email_notification(
    db: Session,
    email_client: EmailClient,
    notification: Notification,
    *,
    rate_limiter: EmailRateLimiter | None = None,
    now: datetime | None = None,
) -> DispatchOutcome:
    """Route one notification to email, digest queue or nowhere. Commits.

    Called by project event handlers right after `create_notification`.
    """
    rate_limiter = rate_limiter or email_rate_limiter
    now = now or datetime.now(UTC)
    prefs = get_preferences(db, notification.user_id)

    if not _type_enabled(prefs, notification.type):
        return DispatchOutcome.DISABLED

    user = db.query(User).filter(User.id == notification.user_id).first()
    if user is None or not user.email:
        logger.warning("User %s not found for email notification", notification.user_id)
        return DispatchOutcome.NO_RECIPIENT

    frequency = prefs.email_digest_frequency or DigestFrequency.IMMEDIATE.value
    if frequency == DigestFrequency.NEVER:
        return DispatchOutcome.OPTED_OUT

    is_large_expense = notification.type == NotificationType.LARGE_EXPENSE
    if frequency in (DigestFrequency.DAILY, DigestFrequency.WEEKLY) and not is_large_expense:
        db.add(
            DigestQueueEntry(
                user_id=user.id,
                notification_id=notification.id,
                digest_type=frequency,
                scheduled_for=next_digest_time(frequency, prefs.timezone, now),
                processed=False,
            )
        )
        db.commit()
        return DispatchOutcome.QUEUED

    if not rate_limiter.can_send(user.id, is_large_expense=is_large_expense, now=now):
        logger.warning("Immediate email rate limit reached for user %s", user.id)
        return DispatchOutcome.RATE_LIMITED

    project_name = "General"
    if notification.project_id is not None:
        project = db.query(Project).filter(Project.id == notification.project_id).first()
        project_name = project.name if project else "Unknown project"

    email = build_notification_email(
        to=user.email,
        project_name=project_name,
        notification_type=notification.type,
        message=notification.message,
        unsubscribe_url=unsubscribe_url(user.id),
    )
    log = EmailLog(
        user_id=user.id,
        notification_id=notification.id,
        email_type=notification.type,
        recipient_email=user.email,
        subject=email.subject,
    )
    try:
        log.provider_message_id = email_client.send(email)
        log.status = EmailStatus.SENT.value
        outcome = DispatchOutcome.SENT
    except Exception as exc:  # immediate emails are fire-and-forget
        log.status = EmailStatus.FAILED.value
        log.last_error = str(exc)[:2000]
        outcome = DispatchOutcome.FAILED
        logger.error("Failed to send %s email to %s: %s", notification.type, user.email, exc)
    db.add(log)
    db.commit()
    return outcome
