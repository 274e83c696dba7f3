"""Shared FastAPI dependencies."""

import hmac
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .auth.models import User
from .config import settings
from .database.base import get_db
from .errors import ConfigurationError, CronUnauthorized
from .integrations.blob_store import BlobStore, create_blob_store
from .integrations.email import EmailClient, create_email_client

__all__ = [
    "AuthRequired",
    "get_current_user",
    "get_db",
    "get_email_client",
    "get_report_store",
    "verify_cron_secret",
]


class AuthRequired(Exception):
    """Raised when user is not authenticated. Handled by exception handler in main.py."""

    pass


def verify_cron_secret(request: Request) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` on scheduled-job endpoints."""
    if not settings.cron_secret:
        raise ConfigurationError("CRON_SECRET not configured")
    header = request.headers.get("Authorization", "")
    expected = f"Bearer {settings.cron_secret}"
    if not hmac.compare_digest(header.encode(), expected.encode()):
        raise CronUnauthorized("Unauthorized")


def get_email_client(request: Request) -> EmailClient:
    """Email client built once per app and kept on app.state."""
    client = getattr(request.app.state, "email_client", None)
    if client is None:
        client = create_email_client()
        request.app.state.email_client = client
    return client


def get_report_store(request: Request) -> BlobStore:
    store = getattr(request.app.state, "report_store", None)
    if store is None:
        store = create_blob_store("reports")
        request.app.state.report_store = store
    return store


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Get the authenticated user from the session cookie."""
    user_id_str = request.session.get("user_id")
    if not user_id_str:
        raise AuthRequired()
    try:
        user_id = UUID(user_id_str)
    except (ValueError, AttributeError):
        request.session.clear()
        raise AuthRequired()
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        request.session.clear()
        raise AuthRequired()
    return user
