"""Notification, digest queue, delivery log and preference models."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base


class NotificationType(enum.StrEnum):
    COST_ADDED = "cost_added"
    LARGE_EXPENSE = "large_expense"
    DOCUMENT_UPLOADED = "document_uploaded"
    TIMELINE_EVENT = "timeline_event"
    PARTNER_INVITED = "partner_invited"
    COMMENT_ADDED = "comment_added"


class EntityType(enum.StrEnum):
    COST = "cost"
    DOCUMENT = "document"
    EVENT = "event"
    PROJECT = "project"
    COMMENT = "comment"


class DigestFrequency(enum.StrEnum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


class EmailStatus(enum.StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"


class Notification(Base):
    """In-app notification about a project event."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False)
    project_id = Column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    queue_entries = relationship("DigestQueueEntry", back_populates="notification", passive_deletes=True)

    __table_args__ = (Index("idx_notifications_user_read", "user_id", "read"),)


class DigestQueueEntry(Base):
    """A notification waiting to go out in a daily or weekly digest.

    `claim_token`/`claimed_at` form a lease: a digest run stamps its token on
    the rows it is about to send so an overlapping run skips them.
    """

    __tablename__ = "digest_queue"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    notification_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    digest_type = Column(String(20), nullable=False, index=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False, index=True)
    processed = Column(Boolean, default=False, nullable=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    claim_token = Column(String(36), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    notification = relationship("Notification", back_populates="queue_entries")


class EmailLog(Base):
    """One outbound email attempt; status is updated by provider webhooks."""

    __tablename__ = "email_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    notification_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="SET NULL"),
        nullable=True,
    )
    email_type = Column(String(50), nullable=False)  # cost_added, daily_digest, ...
    recipient_email = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=EmailStatus.SENT.value, index=True)
    provider_message_id = Column(String(255), nullable=True, index=True)
    attempts = Column(Integer, nullable=False, default=1)
    last_error = Column(Text, nullable=True)
    sent_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    delivered_at = Column(DateTime(timezone=True), nullable=True)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    email_on_cost = Column(Boolean, default=True, nullable=False)
    email_on_large_expense = Column(Boolean, default=True, nullable=False)
    email_on_document = Column(Boolean, default=True, nullable=False)
    email_on_timeline = Column(Boolean, default=True, nullable=False)
    email_on_comment = Column(Boolean, default=True, nullable=False)
    email_digest_frequency = Column(
        String(20),
        default=DigestFrequency.IMMEDIATE.value,
        nullable=False,
    )
    timezone = Column(String(64), default="UTC", nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    user = relationship("User", back_populates="preferences")
