"""Shared test fixtures."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from devtracker.auth.models import User
from devtracker.database.base import Base
from devtracker.errors import EmailDeliveryError
from devtracker.integrations.blob_store import LocalBlobStore
from devtracker.notifications.models import (
    DigestQueueEntry,
    EmailLog,
    Notification,
    NotificationPreference,
)
from devtracker.projects.models import Project

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [User, Project, Notification, DigestQueueEntry, EmailLog, NotificationPreference]

# Default clock for seeded rows (a Monday). Test modules keep their own copy.
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


class FakeEmailClient:
    """Records sent emails; addresses in `fail_for` raise EmailDeliveryError."""

    def __init__(self, fail_for: set[str] | None = None):
        self.sent = []
        self.fail_for = fail_for or set()

    def send(self, email):
        if email.to in self.fail_for:
            raise EmailDeliveryError(f"mailbox unavailable: {email.to}")
        self.sent.append(email)
        return f"msg-{len(self.sent)}"


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing.

    Note: SQLite stores DateTime without tz info; values read back are naive UTC.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def report_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", "reports")


@pytest.fixture
def make_email_client():
    """Factory for FakeEmailClient instances, e.g. make_email_client(fail_for={...})."""

    def _make(fail_for=None):
        return FakeEmailClient(fail_for)

    return _make


@pytest.fixture
def make_user(db_session):
    """Factory for users; `frequency` also creates their notification preferences."""

    def _make(email="test@example.com", name="Test User", frequency=None, timezone="UTC"):
        user = User(
            id=uuid.uuid4(),
            email=email,
            name=name,
            password_hash="$2b$12$fakehash",
        )
        db_session.add(user)
        if frequency is not None:
            db_session.add(
                NotificationPreference(
                    user_id=user.id,
                    email_digest_frequency=frequency,
                    timezone=timezone,
                )
            )
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_project(db_session):
    def _make(owner, name="Harbour View"):
        project = Project(id=uuid.uuid4(), name=name, owner_id=owner.id)
        db_session.add(project)
        db_session.commit()
        return project

    return _make


@pytest.fixture
def make_notification(db_session):
    def _make(user, *, project=None, message="Cost added", created_at=None, type="cost_added"):
        notification = Notification(
            id=uuid.uuid4(),
            user_id=user.id,
            type=type,
            entity_type="cost",
            entity_id=str(uuid.uuid4()),
            project_id=project.id if project else None,
            message=message,
            created_at=created_at or NOW - timedelta(hours=2),
        )
        db_session.add(notification)
        db_session.commit()
        return notification

    return _make


@pytest.fixture
def queue(db_session):
    """Factory for digest queue entries, due an hour before NOW by default."""

    def _make(user, notification, *, digest_type="daily", scheduled_for=None, **extra):
        entry = DigestQueueEntry(
            id=uuid.uuid4(),
            user_id=user.id,
            notification_id=notification.id,
            digest_type=digest_type,
            scheduled_for=scheduled_for or NOW - timedelta(hours=1),
            processed=False,
            **extra,
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make


@pytest.fixture
def test_user(make_user):
    """A user on the daily digest."""
    return make_user(frequency="daily")


@pytest.fixture
def test_project(make_project, test_user):
    return make_project(test_user)
