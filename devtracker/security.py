"""Secrets at rest and signed tokens, all keyed off SECRET_KEY.

SMTP passwords may be stored encrypted with Fernet (AES-128-CBC + HMAC).
Unsubscribe links carry a Fernet token whose timestamp doubles as expiry.
"""

import base64
import hashlib
import hmac
import logging
from uuid import UUID

from cryptography.fernet import Fernet, InvalidToken

from .config import settings

logger = logging.getLogger(__name__)

_UNSUBSCRIBE_PREFIX = "unsubscribe:"


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from the app SECRET_KEY using SHA-256."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def _fernet() -> Fernet:
    return Fernet(_derive_fernet_key(settings.secret_key))


def encrypt_value(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    return _fernet().decrypt(ciphertext.encode()).decode()


def is_encrypted(value: str) -> bool:
    # Fernet tokens start with version byte 0x80 -> "gAAAAA" in base64
    return value.startswith("gAAAAA")


def generate_unsubscribe_token(user_id: UUID) -> str:
    return encrypt_value(f"{_UNSUBSCRIBE_PREFIX}{user_id}")


def verify_unsubscribe_token(token: str, max_age_days: int | None = None) -> UUID | None:
    """Return the user id carried by a valid, unexpired token, else None."""
    if max_age_days is None:
        max_age_days = settings.unsubscribe_token_max_age_days
    try:
        payload = _fernet().decrypt(token.encode(), ttl=max_age_days * 86400).decode()
    except (InvalidToken, ValueError):
        logger.info("Rejected unsubscribe token (invalid or expired)")
        return None
    if not payload.startswith(_UNSUBSCRIBE_PREFIX):
        return None
    try:
        return UUID(payload[len(_UNSUBSCRIBE_PREFIX):])
    except ValueError:
        return None


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of an HMAC-SHA256 hex signature."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature.strip())
