"""Tests for auth service."""

from unittest.mock import patch


from devtracker.auth.models import User
from devtracker.auth.service import authenticate_user, ensure_admin_user, hash_password, verify_password


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("mysecretpassword")
        assert hashed != "mysecretpassword"
        assert verify_password("mysecretpassword", hashed)

    def test_wrong_password_fails(self):
        assert not verify_password("wrongpassword", hash_password("correctpassword"))

    def test_malformed_hash_fails(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestAuthenticateUser:
    def test_valid_credentials(self, db_session, make_user):
        user = make_user(email="auth@example.com")
        user.password_hash = hash_password("testpass123")
        db_session.commit()

        assert authenticate_user(db_session, "Auth@Example.com", "testpass123").id == user.id

    def test_wrong_password(self, db_session, make_user):
        user = make_user(email="auth@example.com")
        user.password_hash = hash_password("testpass123")
        db_session.commit()

        assert authenticate_user(db_session, "auth@example.com", "wrong") is None

    def test_inactive_user(self, db_session, make_user):
        user = make_user(email="auth@example.com")
        user.password_hash = hash_password("testpass123")
        user.is_active = False
        db_session.commit()

        assert authenticate_user(db_session, "auth@example.com", "testpass123") is None

    def test_nonexistent_user(self, db_session):
        assert authenticate_user(db_session, "nobody@example.com", "pass") is None


class TestEnsureAdminUser:
    def test_creates_admin_once(self, db_session):
        with patch("devtracker.auth.service.settings") as mock_settings:
            mock_settings.admin_email = "admin@example.com"
            mock_settings.admin_password = "adminpass"
            ensure_admin_user(db_session)
            ensure_admin_user(db_session)
            db_session.commit()

        assert db_session.query(User).filter(User.email == "admin@example.com").count() == 1

    def test_no_op_without_env(self, db_session):
        with patch("devtracker.auth.service.settings") as mock_settings:
            mock_settings.admin_email = ""
            mock_settings.admin_password = ""
            assert ensure_admin_user(db_session) is None
