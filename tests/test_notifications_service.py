"""Tests for notification creation, email dispatch and the email rate limiter."""

from datetime import UTC, datetime, timedelta

import pytest

from devtracker.notifications.models import DigestQueueEntry, EmailLog, NotificationPreference
from devtracker.notifications.schemas import DispatchOutcome
from devtracker.notifications.service import (
    EmailRateLimiter,
    create_notification,
    dispatch_email_notification,
    get_preferences,
    next_digest_time,
)

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)  # Monday, same clock as the conftest factories


class TestNextDigestTime:
    def test_daily_later_today(self):
        now = datetime(2026, 10, 19, 7, 0, tzinfo=UTC)
        assert next_digest_time("daily", "UTC", now) == datetime(2026, 10, 19, 8, 0, tzinfo=UTC)

    def test_daily_rolls_to_tomorrow(self):
        now = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)
        assert next_digest_time("daily", "UTC", now) == datetime(2026, 10, 20, 8, 0, tzinfo=UTC)

    def test_weekly_on_monday_goes_to_next_monday(self):
        now = datetime(2026, 10, 19, 7, 0, tzinfo=UTC)  # Monday
        assert next_digest_time("weekly", "UTC", now) == datetime(2026, 10, 26, 8, 0, tzinfo=UTC)

    def test_weekly_midweek(self):
        now = datetime(2026, 10, 22, 15, 0, tzinfo=UTC)  # Thursday
        assert next_digest_time("weekly", "UTC", now) == datetime(2026, 10, 26, 8, 0, tzinfo=UTC)

    def test_user_timezone(self):
        # 11:00 in Sydney (UTC+11 in October), so 08:00 local tomorrow
        now = datetime(2026, 10, 19, 0, 0, tzinfo=UTC)
        assert next_digest_time("daily", "Australia/Sydney", now) == datetime(2026, 10, 19, 21, 0, tzinfo=UTC)

    def test_invalid_timezone_falls_back_to_utc(self):
        now = datetime(2026, 10, 19, 7, 0, tzinfo=UTC)
        assert next_digest_time("daily", "Mars/Olympus_Mons", now) == datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


class TestEmailRateLimiter:
    def test_allows_up_to_limit_then_blocks(self):
        limiter = EmailRateLimiter(max_per_window=3)
        results = [limiter.can_send("u1", now=NOW) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_window_resets(self):
        limiter = EmailRateLimiter(max_per_window=1)
        assert limiter.can_send("u1", now=NOW)
        assert not limiter.can_send("u1", now=NOW + timedelta(minutes=30))
        assert limiter.can_send("u1", now=NOW + timedelta(minutes=61))

    def test_large_expense_bypasses_and_is_not_counted(self):
        limiter = EmailRateLimiter(max_per_window=1)
        assert limiter.can_send("u1", now=NOW)
        assert limiter.can_send("u1", is_large_expense=True, now=NOW)
        assert limiter.current_count("u1", now=NOW)[0] == 1

    def test_users_are_independent(self):
        limiter = EmailRateLimiter(max_per_window=1)
        assert limiter.can_send("u1", now=NOW)
        assert limiter.can_send("u2", now=NOW)

    def test_current_count_and_reset(self):
        limiter = EmailRateLimiter(max_per_window=5)
        limiter.can_send("u1", now=NOW)
        limiter.can_send("u1", now=NOW)
        assert limiter.current_count("u1", now=NOW) == (2, NOW + timedelta(hours=1))

        limiter.reset("u1")
        assert limiter.current_count("u1", now=NOW) == (0, None)

    def test_cleanup_expired(self):
        limiter = EmailRateLimiter()
        limiter.can_send("u1", now=NOW)
        limiter.can_send("u2", now=NOW + timedelta(minutes=50))

        assert limiter.cleanup_expired(now=NOW + timedelta(minutes=70)) == 1
        limiter.clear()
        assert limiter.current_count("u2", now=NOW + timedelta(minutes=70)) == (0, None)


class TestPreferences:
    def test_defaults_when_no_row(self, db_session, make_user):
        user = make_user()
        prefs = get_preferences(db_session, user.id)
        assert prefs.email_digest_frequency == "immediate"
        assert prefs.email_on_cost is True
        assert db_session.query(NotificationPreference).count() == 0

    def test_stored_row(self, db_session, test_user):
        assert get_preferences(db_session, test_user.id).email_digest_frequency == "daily"


class TestCreateNotification:
    def test_persists_notification(self, db_session, test_user, test_project):
        notification = create_notification(
            db_session,
            user_id=test_user.id,
            notification_type="cost_added",
            entity_type="cost",
            entity_id="c-1",
            message="Plumbing invoice added",
            project_id=test_project.id,
        )
        db_session.commit()

        assert notification.id is not None
        assert notification.read is False


class TestDispatchEmailNotification:
    def test_immediate_sends_and_logs(self, db_session, make_user, make_project, make_notification, make_email_client):
        user = make_user(email="now@example.com", frequency="immediate")
        notification = make_notification(user, project=make_project(user, "Ridge Lots"))
        client = make_email_client()

        outcome = dispatch_email_notification(db_session, client, notification, rate_limiter=EmailRateLimiter(), now=NOW)

        assert outcome is DispatchOutcome.SENT
        assert client.sent[0].subject.startswith("[Ridge Lots]")
        log = db_session.query(EmailLog).one()
        assert log.status == "sent"
        assert log.notification_id == notification.id

    def test_daily_preference_queues_for_next_digest(self, db_session, test_user, make_notification, make_email_client):
        notification = make_notification(test_user)
        client = make_email_client()

        outcome = dispatch_email_notification(db_session, client, notification, rate_limiter=EmailRateLimiter(), now=NOW)

        assert outcome is DispatchOutcome.QUEUED
        assert client.sent == []
        entry = db_session.query(DigestQueueEntry).one()
        assert entry.digest_type == "daily"
        assert entry.scheduled_for.replace(tzinfo=UTC) == datetime(2026, 10, 20, 8, 0, tzinfo=UTC)

    def test_never_preference_opts_out(self, db_session, make_user, make_notification, make_email_client):
        user = make_user(email="quiet@example.com", frequency="never")
        notification = make_notification(user)

        outcome = dispatch_email_notification(db_session, make_email_client(), notification, rate_limiter=EmailRateLimiter())

        assert outcome is DispatchOutcome.OPTED_OUT

    def test_disabled_type_is_dropped(self, db_session, test_user, make_notification, make_email_client):
        prefs = db_session.get(NotificationPreference, test_user.id)
        prefs.email_on_document = False
        db_session.commit()
        notification = make_notification(test_user, type="document_uploaded")

        outcome = dispatch_email_notification(db_session, make_email_client(), notification, rate_limiter=EmailRateLimiter())

        assert outcome is DispatchOutcome.DISABLED
        assert db_session.query(DigestQueueEntry).count() == 0

    def test_large_expense_skips_digest(self, db_session, test_user, make_notification, make_email_client):
        notification = make_notification(test_user, type="large_expense")
        client = make_email_client()

        outcome = dispatch_email_notification(db_session, client, notification, rate_limiter=EmailRateLimiter())

        assert outcome is DispatchOutcome.SENT
        assert db_session.query(DigestQueueEntry).count() == 0

    def test_rate_limited(self, db_session, make_user, make_notification, make_email_client):
        user = make_user(email="busy@example.com", frequency="immediate")
        limiter = EmailRateLimiter(max_per_window=1)
        client = make_email_client()
        first = make_notification(user)
        second = make_notification(user)

        assert dispatch_email_notification(db_session, client, first, rate_limiter=limiter, now=NOW) is DispatchOutcome.SENT
        assert dispatch_email_notification(db_session, client, second, rate_limiter=limiter, now=NOW) is DispatchOutcome.RATE_LIMITED
        assert len(client.sent) == 1

    def test_send_failure_is_logged_not_raised(self, db_session, make_user, make_notification, make_email_client):
        user = make_user(email="gone@example.com", frequency="immediate")
        notification = make_notification(user)

        outcome = dispatch_email_notification(
            db_session,
            make_email_client(fail_for={"gone@example.com"}),
            notification,
            rate_limiter=EmailRateLimiter(),
        )

        assert outcome is DispatchOutcome.FAILED
        assert db_session.query(EmailLog).one().status == "failed"

    @pytest.mark.parametrize("frequency", ["immediate", "daily"])
    def test_partner_invites_are_always_on(
        self, db_session, frequency, make_user, make_notification, make_email_client
    ):
        user = make_user(email=f"{frequency}@example.com", frequency=frequency)
        notification = make_notification(user, type="partner_invited")

        outcome = dispatch_email_notification(db_session, make_email_client(), notification, rate_limiter=EmailRateLimiter(), now=NOW)

        assert outcome in (DispatchOutcome.SENT, DispatchOutcome.QUEUED)
