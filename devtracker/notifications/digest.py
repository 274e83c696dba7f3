"""Digest batcher: turns queued notifications into one summary email per recipient.

A run claims its rows before sending anything: a single conditional UPDATE
stamps a fresh claim token on rows that are still unprocessed and not held
by a live lease, and the claim is committed. Only rows carrying this run's
token are sent, so two overlapping runs never put the same notification in
two digests. A failed send releases its rows for the next run; a crashed
run's lease lapses after `digest_claim_lease_minutes`.
"""

import logging
import uuid
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.models import User
from ..config import settings
from ..errors import InvalidArgument
from ..integrations.email import EmailClient
from ..projects.models import Project
from ..security import generate_unsubscribe_token
from .models import (
    DigestFrequency,
    DigestQueueEntry,
    EmailLog,
    EmailStatus,
    Notification,
    NotificationPreference,
)
from .schemas import DigestRunFrequency, DigestRunResult
from .templates import DigestItem, DigestProjectGroup, build_digest_email

logger = logging.getLogger(__name__)

_NO_PROJECT_LABEL = "General"
_UNKNOWN_PROJECT_LABEL = "Unknown project"


def unsubscribe_url(user_id: uuid.UUID) -> str:
    return f"{settings.app_base_url.rstrip('/')}/unsubscribe/{generate_unsubscribe_token(user_id)}"


def _parse_frequency(frequency: str | DigestRunFrequency) -> DigestRunFrequency:
    try:
        return DigestRunFrequency(frequency)
    except ValueError:
        raise InvalidArgument(f"frequency must be one of daily, weekly, all (got {frequency!r})") from None


def _candidate_ids(db: Session, frequency: DigestRunFrequency, now: datetime) -> list[uuid.UUID]:
    query = (
        db.query(DigestQueueEntry.id)
        .join(NotificationPreference, NotificationPreference.user_id == DigestQueueEntry.user_id)
        .filter(DigestQueueEntry.processed.is_(False))
    )
    if frequency is DigestRunFrequency.ALL:
        # Not yet due is fine, opted out is not
        query = query.filter(
            NotificationPreference.email_digest_frequency.in_(
                [DigestFrequency.DAILY.value, DigestFrequency.WEEKLY.value]
            )
        )
    else:
        query = query.filter(
            NotificationPreference.email_digest_frequency == frequency.value,
            DigestQueueEntry.scheduled_for <= now,
        )
    return [row.id for row in query.all()]


def _claim(db: Session, ids: list[uuid.UUID], token: str, now: datetime) -> int:
    """Stamp `token` on the rows nobody else holds. Commits so other runs see the claim."""
    if not ids:
        return 0
    lease_expired = now - timedelta(minutes=settings.digest_claim_lease_minutes)
    claimed = (
        db.query(DigestQueueEntry)
        .filter(
            DigestQueueEntry.id.in_(ids),
            DigestQueueEntry.processed.is_(False),
            or_(
                DigestQueueEntry.claim_token.is_(None),
                DigestQueueEntry.claimed_at < lease_expired,
            ),
        )
        .update(
            {DigestQueueEntry.claim_token: token, DigestQueueEntry.claimed_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed


def _release(entries: list[DigestQueueEntry]) -> None:
    for entry in entries:
        entry.claim_token = None
        entry.claimed_at = None


def _project_names(db: Session, project_ids: set[uuid.UUID]) -> dict[uuid.UUID, str]:
    if not project_ids:
        return {}
    rows = db.query(Project.id, Project.name).filter(Project.id.in_(project_ids)).all()
    return {row.id: row.name for row in rows}


def _group_by_project(
    rows: list[tuple[DigestQueueEntry, Notification]],
    names: dict[uuid.UUID, str],
) -> list[DigestProjectGroup]:
    by_project: dict[uuid.UUID | None, list[DigestItem]] = defaultdict(list)
    for _entry, notification in rows:
        by_project[notification.project_id].append(
            DigestItem(
                type=notification.type,
                message=notification.message,
                created_at=notification.created_at,
            )
        )

    groups = []
    for project_id, items in by_project.items():
        if project_id is None:
            label = _NO_PROJECT_LABEL
        else:
            label = names.get(project_id, _UNKNOWN_PROJECT_LABEL)
        groups.append(
            DigestProjectGroup(
                project_id=str(project_id) if project_id else None,
                project_name=label,
                items=items,
            )
        )
    # Busiest project first, then by name for a stable order
    groups.sort(key=lambda g: (-g.count, g.project_name))
    return groups


def run_digest(
    db: Session,
    email_client: EmailClient,
    frequency: str | DigestRunFrequency,
    now: datetime | None = None,
) -> DigestRunResult:
    """Send one digest per recipient with due, unprocessed queue entries.

    Commits as it goes: once after claiming and once per recipient, so
    progress survives a failure later in the batch.
    """
    freq = _parse_frequency(frequency)
    now = now or datetime.now(UTC)
    result = DigestRunResult(frequency=freq)
    token = str(uuid.uuid4())

    claimed = _claim(db, _candidate_ids(db, freq, now), token, now)
    if not claimed:
        logger.info("No %s digests to process", freq.value)
        return result

    rows = (
        db.query(DigestQueueEntry, Notification)
        .join(Notification, Notification.id == DigestQueueEntry.notification_id)
        .filter(DigestQueueEntry.claim_token == token)
        .order_by(DigestQueueEntry.user_id, Notification.created_at)
        .all()
    )

    by_user: dict[uuid.UUID, list[tuple[DigestQueueEntry, Notification]]] = defaultdict(list)
    for entry, notification in rows:
        by_user[entry.user_id].append((entry, notification))

    users = {u.id: u for u in db.query(User).filter(User.id.in_(by_user.keys())).all()}
    names = _project_names(db, {n.project_id for _e, n in rows if n.project_id is not None})

    logger.info("Claimed %d queue entries for %d recipient(s) (%s)", len(rows), len(by_user), freq.value)

    for user_id, user_rows in by_user.items():
        entries = [entry for entry, _n in user_rows]
        user = users.get(user_id)
        if user is None or not user.email:
            _release(entries)
            db.commit()
            result.errors.append(f"user {user_id}: no recipient address")
            logger.warning("Skipping digest for user %s: no recipient address", user_id)
            continue

        # "all" runs label each digest by the user's own queue type
        label = user_rows[0][0].digest_type if freq is DigestRunFrequency.ALL else freq.value
        email_type = f"{label}_digest"
        email = build_digest_email(
            to=user.email,
            user_name=user.name or "",
            frequency=label,
            groups=_group_by_project(user_rows, names),
            unsubscribe_url=unsubscribe_url(user.id),
        )

        try:
            message_id = email_client.send(email)
        except Exception as exc:  # one recipient's failure must not abort the batch
            db.rollback()
            _release(entries)
            db.add(
                EmailLog(
                    user_id=user.id,
                    email_type=email_type,
                    recipient_email=user.email,
                    subject=email.subject,
                    status=EmailStatus.FAILED.value,
                    last_error=str(exc)[:2000],
                )
            )
            db.commit()
            result.errors.append(f"{user.email}: {exc}")
            logger.error("Failed to send %s digest to %s: %s", freq.value, user.email, exc)
            continue

        try:
            for entry in entries:
                entry.processed = True
                entry.processed_at = now
            db.add(
                EmailLog(
                    user_id=user.id,
                    email_type=email_type,
                    recipient_email=user.email,
                    subject=email.subject,
                    status=EmailStatus.SENT.value,
                    provider_message_id=message_id,
                )
            )
            db.commit()
        except Exception as exc:
            # Sent but not recorded: rows keep this run's claim until the lease lapses
            db.rollback()
            result.errors.append(f"{user.email}: digest sent but not recorded: {exc}")
            logger.error("Sent %s digest to %s but failed to record it: %s", freq.value, user.email, exc)
            continue

        result.digests_sent += 1
        result.notifications_processed += len(entries)
        logger.info("Sent %s digest to %s (%d notifications)", freq.value, user.email, len(entries))

    return result
