"""Generated report storage and 24-hour expiry enforcement.

Reports live in the "reports" blob store under `<report_id>/<file_name>`
with flat string metadata (userId, projectId, format, fileName, mimeType,
generatedAt, expiresAt). Expiry is enforced in two places:

- `fetch_report_for_download` / `is_report_expired`: checked on every
  access, so an expired artifact is never served.
- `cleanup_expired_reports`: sweeps the whole store. Runs after each
  `save_report` and from the scheduler.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from ..config import settings
from ..errors import InvalidArgument, ReportAccessDenied, ReportExpired, ReportNotFound
from ..integrations.blob_store import BlobStore
from .schemas import ReportArtifact, ReportCleanupResult, ReportFormat

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ReportFormat.PDF: "application/pdf",
    ReportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def report_key(report_id: str, file_name: str) -> str:
    if not report_id or not file_name:
        raise InvalidArgument("reportId and fileName are required")
    for part in (report_id, file_name):
        if "/" in part or "\\" in part or part in (".", ".."):
            raise InvalidArgument(f"Invalid report path component: {part!r}")
    return f"{report_id}/{file_name}"


def _parse_expiry(metadata: dict | None) -> datetime | None:
    """Return the aware expiry timestamp, or None when absent or unparseable."""
    if not metadata:
        return None
    raw = metadata.get("expiresAt")
    if not raw:
        return None
    try:
        expires_at = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


# ── Generation side ────────────────────────────────────────────────────


def save_report(
    store: BlobStore,
    *,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    report_format: ReportFormat,
    file_name: str,
    content: bytes,
    is_partner_view: bool = False,
    now: datetime | None = None,
) -> ReportArtifact:
    """Store a rendered report with its TTL metadata, then sweep expired ones.

    Entry point for the report generation code.
    """
    now = _now(now)
    report_id = str(uuid.uuid4())
    key = report_key(report_id, file_name)
    expires_at = now + timedelta(hours=settings.report_ttl_hours)

    artifact = ReportArtifact(
        report_id=report_id,
        file_name=file_name,
        user_id=str(user_id),
        project_id=str(project_id),
        format=report_format,
        mime_type=MIME_TYPES[report_format],
        generated_at=now,
        expires_at=expires_at,
    )
    store.set(
        key,
        content,
        metadata={
            "userId": artifact.user_id,
            "projectId": artifact.project_id,
            "format": report_format.value,
            "fileName": file_name,
            "mimeType": artifact.mime_type,
            "generatedAt": now.isoformat(),
            "expiresAt": expires_at.isoformat(),
            "isPartnerView": "true" if is_partner_view else "false",
        },
    )
    logger.info("Stored report %s for project %s (expires %s)", key, project_id, expires_at.isoformat())

    # Opportunistic sweep; its problems must not fail the generation request
    result = cleanup_expired_reports(store, now=now)
    if result.errors:
        logger.warning("Report cleanup after generation reported %d error(s)", len(result.errors))

    return artifact


# ── Expiry ─────────────────────────────────────────────────────────────


def cleanup_expired_reports(store: BlobStore, now: datetime | None = None) -> ReportCleanupResult:
    """Delete every report whose expiresAt is in the past.

    Keys without metadata or without a usable expiresAt are skipped, not
    deleted. A failure on one key is recorded and the scan moves on.
    """
    now = _now(now)
    result = ReportCleanupResult()

    try:
        keys = store.list_keys()
    except Exception as exc:
        result.errors.append(f"Cleanup failed: {exc}")
        logger.exception("Report cleanup could not list the store")
        return result

    result.total_scanned = len(keys)

    for key in keys:
        try:
            metadata = store.get_metadata(key)
            if not metadata:
                logger.warning("Report %s has no metadata, skipping", key)
                continue

            expires_at = _parse_expiry(metadata)
            if expires_at is None:
                logger.warning("Report %s has no usable expiry metadata, skipping", key)
                continue

            if expires_at < now:
                store.delete(key)
                result.total_deleted += 1
                result.deleted_reports.append(key)
                logger.info("Deleted expired report %s (expired at %s)", key, expires_at.isoformat())
        except Exception as exc:
            result.errors.append(f"Failed to process {key}: {exc}")
            logger.error("Failed to process report %s: %s", key, exc)

    if result.total_deleted:
        logger.info(
            "Report cleanup completed: %d of %d reports deleted",
            result.total_deleted,
            result.total_scanned,
        )
    return result


def is_report_expired(
    store: BlobStore,
    report_id: str,
    file_name: str,
    now: datetime | None = None,
) -> bool:
    """True unless the report has an expiresAt that is still in the future."""
    try:
        metadata = store.get_metadata(report_key(report_id, file_name))
    except Exception:
        # Unknown state counts as expired
        logger.exception("Failed to check expiry for report %s/%s", report_id, file_name)
        return True

    expires_at = _parse_expiry(metadata)
    if expires_at is None:
        return True
    return expires_at < _now(now)


def delete_report(store: BlobStore, report_id: str, file_name: str) -> bool:
    """Remove one report. Entry point for report management; logs and returns False on failure."""
    key = report_key(report_id, file_name)
    try:
        store.delete(key)
    except Exception:
        logger.exception("Failed to delete report %s", key)
        return False
    logger.info("Deleted report %s", key)
    return True


def get_report_metadata(store: BlobStore, report_id: str, file_name: str) -> dict | None:
    """Stored metadata for one report, for report listing callers."""
    return store.get_metadata(report_key(report_id, file_name))


# ── Download ───────────────────────────────────────────────────────────


def fetch_report_for_download(
    store: BlobStore,
    report_id: str,
    file_name: str,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> tuple[bytes, str]:
    """Return (content, mime type) for the owner of a live report.

    An expired report is deleted on the spot before ReportExpired is raised.
    """
    key = report_key(report_id, file_name)
    metadata = store.get_metadata(key)
    if not metadata:
        raise ReportNotFound("Report not found - it may have expired")

    if is_report_expired(store, report_id, file_name, now):
        store.delete(key)
        logger.info("Report %s requested after expiry, deleted", key)
        raise ReportExpired("Report has expired - please generate a new report")

    if metadata.get("userId") != str(user_id):
        raise ReportAccessDenied("You do not have access to this report")

    content = store.get(key)
    if content is None:
        raise ReportNotFound("Report data not found")

    mime_type = metadata.get("mimeType") or (
        MIME_TYPES[ReportFormat.PDF] if file_name.endswith(".pdf") else MIME_TYPES[ReportFormat.EXCEL]
    )
    return content, mime_type
