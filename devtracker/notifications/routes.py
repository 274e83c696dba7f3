"""Cron endpoints for digests and retention, the delivery webhook, and unsubscribe."""

import logging
from datetime import UTC, datetime
from html import escape

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import get_db
from ..dependencies import get_email_client, verify_cron_secret
from ..integrations.email import EmailClient
from ..security import verify_signature
from .cleanup import cleanup_old_notifications, count_old_notifications, parse_days
from .digest import run_digest
from .schemas import DeliveryEvent, DigestRunFrequency
from .webhooks import apply_delivery_event, unsubscribe_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])
public_router = APIRouter(tags=["notifications"])

_SIGNATURE_HEADER = "resend-signature"


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat().replace("+00:00", "Z")


# ── Cron ───────────────────────────────────────────────────────────────


@router.post("/cron/cleanup-notifications", dependencies=[Depends(verify_cron_secret)])
def cron_cleanup_notifications(
    days: str | None = Query(None),
    dry_run: str | None = Query(None, alias="dryRun"),
    db: Session = Depends(get_db),
):
    days_old = parse_days(days)
    is_dry_run = dry_run == "true"
    logger.info("Notification cleanup job started (dry_run=%s, days=%d)", is_dry_run, days_old)

    if is_dry_run:
        counted = count_old_notifications(db, days_old)
        return {
            "success": True,
            "dryRun": True,
            "message": f"Would delete {counted.count} notifications",
            "count": counted.count,
            "cutoffDate": _iso(counted.cutoff_date),
            "daysOld": days_old,
        }

    result = cleanup_old_notifications(db, days_old)
    db.commit()
    return {
        "success": True,
        "dryRun": False,
        "message": f"Successfully deleted {result.deleted_count} notifications",
        "deletedCount": result.deleted_count,
        "cutoffDate": _iso(result.cutoff_date),
        "daysOld": days_old,
        "timestamp": _iso(datetime.now(UTC)),
    }


@router.get("/cron/cleanup-notifications", dependencies=[Depends(verify_cron_secret)])
def cron_count_notifications(days: str | None = Query(None), db: Session = Depends(get_db)):
    days_old = parse_days(days)
    counted = count_old_notifications(db, days_old)
    return {
        "success": True,
        "count": counted.count,
        "cutoffDate": _iso(counted.cutoff_date),
        "daysOld": days_old,
        "message": f"{counted.count} notifications are older than {days_old} days",
    }


@router.post("/cron/digests", dependencies=[Depends(verify_cron_secret)])
def cron_process_digests(
    frequency: str = Query(DigestRunFrequency.DAILY.value),
    db: Session = Depends(get_db),
    email_client: EmailClient = Depends(get_email_client),
):
    result = run_digest(db, email_client, frequency)
    return {
        "success": True,
        "frequency": result.frequency.value,
        "digestsSent": result.digests_sent,
        "notificationsProcessed": result.notifications_processed,
        "errors": result.errors,
        "timestamp": _iso(datetime.now(UTC)),
    }


# ── Provider webhook ───────────────────────────────────────────────────


@router.post("/webhooks/email")
async def email_delivery_webhook(request: Request, db: Session = Depends(get_db)):
    """Delivery status callback. Answers 200 even on processing errors so the provider doesn't retry."""
    body = await request.body()

    if settings.email_webhook_secret:
        if not verify_signature(body, request.headers.get(_SIGNATURE_HEADER), settings.email_webhook_secret):
            logger.warning("Rejected delivery webhook with bad signature")
            return JSONResponse({"success": False, "error": "Invalid signature"}, status_code=401)

    try:
        event = DeliveryEvent.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("Malformed delivery webhook: %s", exc.errors()[:1])
        return {"success": False, "error": "Malformed event"}

    logger.info("Delivery webhook %s for %s", event.type, event.data.email_id)
    try:
        message = apply_delivery_event(db, event)
    except Exception as exc:
        db.rollback()
        logger.exception("Error processing delivery webhook")
        return {"success": False, "error": str(exc)}

    return {"success": True, "message": message, "emailId": event.data.email_id}


# ── Unsubscribe ────────────────────────────────────────────────────────

_UNSUBSCRIBE_PAGE = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family:Arial,Helvetica,sans-serif; max-width:480px; margin:64px auto; color:#374151;">
  <h1 style="font-size:20px; color:#111827;">{title}</h1>
  <p>{body}</p>
</body>
</html>"""


@public_router.get("/unsubscribe/{token}", response_class=HTMLResponse)
def unsubscribe(token: str, db: Session = Depends(get_db)):
    user_id = unsubscribe_user(db, token)
    if user_id is None:
        page = _UNSUBSCRIBE_PAGE.format(
            title="Link expired",
            body="This unsubscribe link is invalid or has expired. "
            "You can change email settings from your notification preferences.",
        )
        return HTMLResponse(page, status_code=400)
    page = _UNSUBSCRIBE_PAGE.format(
        title="Unsubscribed",
        body=escape("You will no longer receive notification emails. In-app notifications are unaffected."),
    )
    return HTMLResponse(page)
