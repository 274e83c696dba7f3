"""Rate limiting singleton using slowapi."""

from fastapi import Request
from slowapi import Limiter


def _get_real_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop when behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def user_or_ip(request: Request) -> str:
    """Key authenticated requests by user so shared NATs don't share a budget."""
    user_id = request.session.get("user_id") if "session" in request.scope else None
    return f"user:{user_id}" if user_id else _get_real_ip(request)


limiter = Limiter(key_func=_get_real_ip)
