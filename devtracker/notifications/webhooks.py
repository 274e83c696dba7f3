"""Email provider delivery callbacks and one-click unsubscribe."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from ..auth.models import User
from ..security import verify_unsubscribe_token
from .models import DigestFrequency, EmailLog, EmailStatus, NotificationPreference
from .schemas import DeliveryEvent

logger = logging.getLogger(__name__)

_STATUS_BY_EVENT = {
    "email.sent": EmailStatus.SENT,
    "email.delivered": EmailStatus.DELIVERED,
    "email.bounced": EmailStatus.BOUNCED,
    "email.failed": EmailStatus.FAILED,
}


def map_event_to_status(event_type: str) -> EmailStatus | None:
    """Email log status for a provider event; None for events that don't change it (delayed, opened...)."""
    return _STATUS_BY_EVENT.get(event_type)


def set_digest_frequency(db: Session, user_id: uuid.UUID, frequency: DigestFrequency) -> NotificationPreference:
    prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if prefs is None:
        prefs = NotificationPreference(user_id=user_id)
        db.add(prefs)
    prefs.email_digest_frequency = frequency.value
    prefs.updated_at = datetime.now(UTC)
    return prefs


def apply_delivery_event(db: Session, event: DeliveryEvent) -> str:
    """Update the matching email log from a delivery event. Commits.

    Returns a short description of what was done, for the webhook response.
    """
    message_id = event.data.email_id
    if not message_id:
        logger.warning("Delivery webhook without email_id (%s)", event.type)
        return "No email_id to process"

    log = db.query(EmailLog).filter(EmailLog.provider_message_id == message_id).first()
    if log is None:
        logger.warning("Email log not found for provider id %s", message_id)
        return "Email log not found"

    status = map_event_to_status(event.type)
    if status is not None:
        log.status = status.value
        if status is EmailStatus.DELIVERED:
            log.delivered_at = datetime.now(UTC)
        error = event.data.error or event.data.message
        if error:
            log.last_error = error
        logger.info("Email log %s -> %s", log.id, status.value)

    hard_bounce = event.type == "email.bounced" and event.data.bounce_type == "hard"
    if hard_bounce or event.type == "email.complained":
        set_digest_frequency(db, log.user_id, DigestFrequency.NEVER)
        logger.info("Auto-unsubscribed user %s after %s", log.user_id, event.type)

    db.commit()
    return f"Processed {event.type} event"


def unsubscribe_user(db: Session, token: str) -> uuid.UUID | None:
    """Turn off all notification emails for the user in `token`. Commits.

    Returns the user id, or None when the token is invalid, expired, or names
    no existing user.
    """
    user_id = verify_unsubscribe_token(token)
    if user_id is None:
        return None
    if db.get(User, user_id) is None:
        logger.warning("Unsubscribe token for unknown user %s", user_id)
        return None
    set_digest_frequency(db, user_id, DigestFrequency.NEVER)
    db.commit()
    logger.info("User %s unsubscribed from notification emails", user_id)
    return user_id
