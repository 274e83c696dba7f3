"""Manual maintenance commands.

Usage:
    devtracker cleanup-notifications --dry-run        # show what would be deleted
    devtracker cleanup-notifications --days 30 --yes  # delete notifications older than 30 days
    devtracker process-digests --type weekly          # send due weekly digests
    devtracker cleanup-reports                        # sweep expired reports

Exit code 0 on success or nothing to do, 1 on invalid arguments or failure.
"""

import argparse
import logging
import os
import sys
import time

from .config import settings, setup_logging
from .database.base import session_scope
from .errors import DevTrackerError
from .integrations.blob_store import create_blob_store
from .integrations.email import create_email_client
from .notifications.cleanup import cleanup_old_notifications, count_old_notifications, parse_days
from .notifications.digest import run_digest
from .notifications.schemas import DigestRunFrequency
from .reports.service import cleanup_expired_reports

logger = logging.getLogger(__name__)

_RULE = "=" * 60
_CONFIRM_SECONDS = 5


def _cmd_cleanup_notifications(args: argparse.Namespace) -> int:
    try:
        days_old = parse_days(args.days)
    except DevTrackerError:
        print("Error: --days must be a positive integer", file=sys.stderr)
        return 1

    print(_RULE)
    print("Notification cleanup")
    print(_RULE)
    print(f"Mode: {'DRY RUN (no changes)' if args.dry_run else 'LIVE (will delete)'}")
    print(f"Days threshold: {days_old}")
    print(_RULE)

    with session_scope() as db:
        counted = count_old_notifications(db, days_old)
        if args.dry_run:
            print(f"Found {counted.count} notifications older than {days_old} days")
            print(f"  Cutoff date: {counted.cutoff_date.isoformat()}")
            print("This was a dry run. No notifications were deleted.")
            return 0

        if counted.count == 0:
            print("No notifications to delete.")
            return 0

        print(f"About to delete {counted.count} notifications...")
        if not (args.yes or os.environ.get("CI") == "true"):
            print(f"Press Ctrl+C to cancel, or wait {_CONFIRM_SECONDS} seconds to continue...")
            time.sleep(_CONFIRM_SECONDS)

        result = cleanup_old_notifications(db, days_old)

    print("Cleanup completed successfully!")
    print(f"  Deleted: {result.deleted_count} notifications")
    print(f"  Cutoff date: {result.cutoff_date.isoformat()}")
    return 0


def _cmd_process_digests(args: argparse.Namespace) -> int:
    print(f"=== Digest email processor ({args.type}) ===")
    client = create_email_client()
    with session_scope() as db:
        result = run_digest(db, client, args.type)

    print(f"Digests sent: {result.digests_sent}")
    print(f"Notifications processed: {result.notifications_processed}")
    for error in result.errors:
        print(f"  error: {error}", file=sys.stderr)
    # Per-recipient failures stay queued for the next run; the run itself succeeded
    return 0


def _cmd_cleanup_reports(args: argparse.Namespace) -> int:
    result = cleanup_expired_reports(create_blob_store("reports"))
    print(f"Scanned {result.total_scanned} reports, deleted {result.total_deleted}")
    for key in result.deleted_reports:
        print(f"  deleted: {key}")
    for error in result.errors:
        print(f"  error: {error}", file=sys.stderr)
    return 1 if any(e.startswith("Cleanup failed") for e in result.errors) else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devtracker", description="Development tracker maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    cleanup = sub.add_parser("cleanup-notifications", help="Delete notifications past the retention window")
    cleanup.add_argument("--dry-run", action="store_true", help="Only count what would be deleted")
    cleanup.add_argument("--days", default=None, help=f"Age threshold in days (default {settings.notification_retention_days})")
    cleanup.add_argument("--yes", action="store_true", help="Skip the confirmation pause")
    cleanup.set_defaults(func=_cmd_cleanup_notifications)

    digests = sub.add_parser("process-digests", help="Send due digest emails")
    digests.add_argument(
        "--type",
        choices=[f.value for f in DigestRunFrequency],
        default=DigestRunFrequency.DAILY.value,
        help="daily, weekly, or all (every unprocessed entry, due or not)",
    )
    digests.set_defaults(func=_cmd_process_digests)

    reports = sub.add_parser("cleanup-reports", help="Delete expired generated reports")
    reports.set_defaults(func=_cmd_cleanup_reports)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # argparse exits 2 on bad usage; report it as an invalid-argument failure
        return 0 if exc.code == 0 else 1

    setup_logging()
    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.exception("Command %s failed", args.command)
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
