"""Notification batch results and webhook payloads."""

import enum
from datetime import datetime

from pydantic import BaseModel, Field


class DigestRunFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ALL = "all"


class DigestRunResult(BaseModel):
    frequency: DigestRunFrequency
    digests_sent: int = 0
    notifications_processed: int = 0
    errors: list[str] = Field(default_factory=list)


class NotificationCleanupResult(BaseModel):
    deleted_count: int
    cutoff_date: datetime


class NotificationCountResult(BaseModel):
    count: int
    cutoff_date: datetime


class DispatchOutcome(str, enum.Enum):
    DISABLED = "disabled"  # per-type toggle off
    OPTED_OUT = "opted_out"  # digest frequency "never"
    NO_RECIPIENT = "no_recipient"
    QUEUED = "queued"
    RATE_LIMITED = "rate_limited"
    SENT = "sent"
    FAILED = "failed"


class DeliveryEventData(BaseModel):
    email_id: str | None = None
    to: str | list[str] | None = None
    subject: str | None = None
    bounce_type: str | None = None
    error: str | None = None
    message: str | None = None

    model_config = {"extra": "ignore"}


class DeliveryEvent(BaseModel):
    """Provider webhook envelope (Resend format)."""

    type: str
    created_at: str | None = None
    data: DeliveryEventData = Field(default_factory=DeliveryEventData)

    model_config = {"extra": "ignore"}
