"""Tests for HTTP routes using FastAPI TestClient."""

import json
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from devtracker.auth.service import hash_password
from devtracker.config import settings
from devtracker.database.base import get_db
from devtracker.notifications.models import DigestQueueEntry, Notification, NotificationPreference
from devtracker.reports.schemas import ReportFormat
from devtracker.reports.service import save_report
from devtracker.security import generate_unsubscribe_token, sign_payload

CRON_SECRET = "cron-s3cret"
CRON_HEADERS = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def app(db_session, report_store, email_client):
    """App with patched lifespan (no migrations, no scheduler) and the test database."""
    from devtracker.main import create_app

    @asynccontextmanager
    async def _test_lifespan(app):
        app.state.email_client = email_client
        app.state.report_store = report_store
        yield

    def _test_db():
        yield db_session

    with patch("devtracker.main.lifespan", _test_lifespan), patch.object(settings, "cron_secret", CRON_SECRET):
        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        yield app


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def user_client(app, test_user):
    """Client whose requests are authenticated as test_user."""
    from devtracker.dependencies import get_current_user

    app.dependency_overrides[get_current_user] = lambda: test_user
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestCronAuth:
    def test_missing_token(self, client):
        response = client.post("/api/cron/cleanup-notifications")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    def test_wrong_token(self, client):
        response = client.post("/api/cron/digests", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_secret_not_configured(self, client):
        with patch.object(settings, "cron_secret", ""):
            response = client.post("/api/cron/cleanup-reports", headers=CRON_HEADERS)
        assert response.status_code == 500
        assert response.json()["success"] is False


class TestCleanupNotificationsCron:
    @pytest.fixture
    def aged_notifications(self, test_user, make_notification):
        now = datetime.now(UTC)
        for days in (0, 50, 95):
            make_notification(test_user, message=f"{days}d", created_at=now - timedelta(days=days))

    def test_cleanup_deletes_old_rows(self, client, db_session, aged_notifications):
        response = client.post("/api/cron/cleanup-notifications", headers=CRON_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["dryRun"] is False
        assert data["deletedCount"] == 1
        assert data["daysOld"] == 90
        assert data["cutoffDate"].endswith("Z")
        assert db_session.query(Notification).count() == 2

    def test_dry_run_only_counts(self, client, db_session, aged_notifications):
        response = client.post("/api/cron/cleanup-notifications?dryRun=true&days=30", headers=CRON_HEADERS)

        data = response.json()
        assert data["dryRun"] is True
        assert data["count"] == 2
        assert data["message"] == "Would delete 2 notifications"
        assert db_session.query(Notification).count() == 3

    def test_get_returns_count(self, client, db_session, aged_notifications):
        response = client.get("/api/cron/cleanup-notifications?days=30", headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.json()["count"] == 2

    @pytest.mark.parametrize("days", ["0", "-3", "abc"])
    def test_invalid_days(self, client, days):
        response = client.post(f"/api/cron/cleanup-notifications?days={days}", headers=CRON_HEADERS)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid days parameter. Must be a positive integer."


class TestDigestCron:
    def test_processes_queue(self, client, db_session, test_user, email_client, make_notification, queue):
        queue(test_user, make_notification(test_user))

        response = client.post("/api/cron/digests?frequency=all", headers=CRON_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["digestsSent"] == 1
        assert data["notificationsProcessed"] == 1
        assert data["errors"] == []
        assert len(email_client.sent) == 1
        assert db_session.query(DigestQueueEntry).one().processed is True

    def test_invalid_frequency(self, client):
        response = client.post("/api/cron/digests?frequency=hourly", headers=CRON_HEADERS)
        assert response.status_code == 400


class TestReportCron:
    def test_sweeps_expired_reports(self, client, report_store):
        report_store.set("old/a.pdf", b"x", metadata={"expiresAt": "2020-01-01T00:00:00Z"})
        report_store.set("new/b.pdf", b"y", metadata={"expiresAt": "2999-01-01T00:00:00Z"})

        response = client.post("/api/cron/cleanup-reports", headers=CRON_HEADERS)

        data = response.json()
        assert data["success"] is True
        assert data["totalScanned"] == 2
        assert data["deletedReports"] == ["old/a.pdf"]


class TestReportDownload:
    def test_requires_login(self, client):
        response = client.get("/api/reports/download/r1/a.pdf")
        assert response.status_code == 401

    def test_owner_downloads(self, user_client, report_store, test_user):
        artifact = save_report(
            report_store,
            user_id=test_user.id,
            project_id=uuid.uuid4(),
            report_format=ReportFormat.PDF,
            file_name="summary.pdf",
            content=b"%PDF-1.7",
        )

        response = user_client.get(f"/api/reports/download/{artifact.report_id}/summary.pdf")

        assert response.status_code == 200
        assert response.content == b"%PDF-1.7"
        assert response.headers["content-type"] == "application/pdf"
        assert 'filename="summary.pdf"' in response.headers["content-disposition"]
        assert "no-store" in response.headers["cache-control"]

    def test_other_users_report_is_forbidden(self, user_client, report_store):
        artifact = save_report(
            report_store,
            user_id=uuid.uuid4(),
            project_id=uuid.uuid4(),
            report_format=ReportFormat.EXCEL,
            file_name="costs.xlsx",
            content=b"xlsx",
        )

        response = user_client.get(f"/api/reports/download/{artifact.report_id}/costs.xlsx")

        assert response.status_code == 403

    def test_expired_report_is_404_and_deleted(self, user_client, report_store, test_user):
        report_store.set(
            "r1/a.pdf",
            b"x",
            metadata={"userId": str(test_user.id), "expiresAt": "2020-01-01T00:00:00Z"},
        )

        response = user_client.get("/api/reports/download/r1/a.pdf")

        assert response.status_code == 404
        assert "expired" in response.json()["error"]
        assert report_store.list_keys() == []

    def test_missing_report(self, user_client):
        assert user_client.get("/api/reports/download/nope/a.pdf").status_code == 404


class TestEmailWebhook:
    def _payload(self, **data):
        return json.dumps({"type": "email.delivered", "data": {"email_id": "re_1", **data}}).encode()

    def test_unknown_email_still_200(self, client):
        response = client.post("/api/webhooks/email", content=self._payload())
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_malformed_body_still_200(self, client):
        response = client.post("/api/webhooks/email", content=b"not json")
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_bad_signature_rejected_when_secret_set(self, client):
        with patch.object(settings, "email_webhook_secret", "whsec"):
            response = client.post(
                "/api/webhooks/email",
                content=self._payload(),
                headers={"resend-signature": "deadbeef"},
            )
        assert response.status_code == 401

    def test_good_signature_accepted(self, client):
        body = self._payload()
        with patch.object(settings, "email_webhook_secret", "whsec"):
            response = client.post(
                "/api/webhooks/email",
                content=body,
                headers={"resend-signature": sign_payload(body, "whsec")},
            )
        assert response.status_code == 200


class TestUnsubscribe:
    def test_valid_token(self, client, db_session, test_user):
        response = client.get(f"/unsubscribe/{generate_unsubscribe_token(test_user.id)}")

        assert response.status_code == 200
        assert "Unsubscribed" in response.text
        prefs = db_session.get(NotificationPreference, test_user.id)
        db_session.refresh(prefs)
        assert prefs.email_digest_frequency == "never"

    def test_invalid_token(self, client):
        response = client.get("/unsubscribe/garbage")
        assert response.status_code == 400


class TestAuth:
    def test_login_and_logout(self, client, db_session, make_user):
        user = make_user(email="owner@example.com")
        user.password_hash = hash_password("correct horse")
        db_session.commit()

        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "correct horse"})
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "owner@example.com"

        response = client.post("/auth/logout")
        assert response.json() == {"success": True}

    def test_bad_password(self, client, db_session, make_user):
        user = make_user(email="owner@example.com")
        user.password_hash = hash_password("correct horse")
        db_session.commit()

        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "wrong"})
        assert response.status_code == 401

    def test_session_grants_download_access(self, client, db_session, report_store, make_user):
        user = make_user(email="owner@example.com")
        user.password_hash = hash_password("pw")
        db_session.commit()
        artifact = save_report(
            report_store,
            user_id=user.id,
            project_id=uuid.uuid4(),
            report_format=ReportFormat.PDF,
            file_name="r.pdf",
            content=b"%PDF",
        )

        client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"})
        response = client.get(f"/api/reports/download/{artifact.report_id}/r.pdf")

        assert response.status_code == 200


class TestUnhandledErrors:
    def test_unexpected_error_returns_json_500(self, client):
        with patch("devtracker.notifications.routes.run_digest", MagicMock(side_effect=RuntimeError("db down"))):
            response = client.post("/api/cron/digests?frequency=daily", headers=CRON_HEADERS)
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "db down"}
