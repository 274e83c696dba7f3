"""Report download and the expired-report sweep endpoint."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..auth.models import User
from ..config import settings
from ..dependencies import get_current_user, get_report_store, verify_cron_secret
from ..integrations.blob_store import BlobStore
from ..rate_limit import limiter, user_or_ip
from .service import cleanup_expired_reports, fetch_report_for_download

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reports"])


@router.get("/reports/download/{report_id}/{file_name}")
@limiter.limit(settings.rate_limit_download, key_func=user_or_ip)
def download_report(
    request: Request,
    report_id: str,
    file_name: str,
    user: User = Depends(get_current_user),
    store: BlobStore = Depends(get_report_store),
):
    content, mime_type = fetch_report_for_download(store, report_id, file_name, user.id)
    logger.info("User %s downloaded report %s/%s", user.id, report_id, file_name)
    return Response(
        content=content,
        media_type=mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{file_name}"',
            "Cache-Control": "private, no-cache, no-store, must-revalidate",
            "Expires": "0",
            "Pragma": "no-cache",
        },
    )


@router.post("/cron/cleanup-reports", dependencies=[Depends(verify_cron_secret)])
def cron_cleanup_reports(store: BlobStore = Depends(get_report_store)):
    result = cleanup_expired_reports(store)
    return {
        "success": not result.errors,
        "totalScanned": result.total_scanned,
        "totalDeleted": result.total_deleted,
        "deletedReports": result.deleted_reports,
        "errors": result.errors,
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    }
