"""Password hashing, credential checks and the bootstrap admin account."""

import logging

import bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from .models import User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    """Verify credentials and return the active user, or None."""
    user = get_user_by_email(db, email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        return None
    return user


def ensure_admin_user(db: Session) -> User | None:
    """Create the admin user from ADMIN_EMAIL/ADMIN_PASSWORD if it doesn't exist yet. Caller commits."""
    if not settings.admin_email or not settings.admin_password:
        return None

    existing = get_user_by_email(db, settings.admin_email)
    if existing:
        return existing

    admin = User(
        email=settings.admin_email.strip().lower(),
        name="Admin",
        password_hash=hash_password(settings.admin_password),
    )
    db.add(admin)
    db.flush()
    logger.info("Created admin user %s", admin.email)
    return admin
