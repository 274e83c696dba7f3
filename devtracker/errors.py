"""Error taxonomy shared by services, routes and the CLI.

Routes stay thin: services raise these, the exception handlers in main.py
turn them into JSON responses with the status codes below.
"""

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_FORBIDDEN = 403
STATUS_NOT_FOUND = 404
STATUS_INTERNAL_ERROR = 500


class DevTrackerError(Exception):
    """Base class for errors with a known HTTP mapping."""

    status_code = STATUS_INTERNAL_ERROR


class ConfigurationError(DevTrackerError):
    """Missing secret or provider credentials. Fatal for the request, never retried."""

    status_code = STATUS_INTERNAL_ERROR


class CronUnauthorized(DevTrackerError):
    """Bad or missing bearer token on a cron endpoint."""

    status_code = STATUS_UNAUTHORIZED


class InvalidArgument(DevTrackerError, ValueError):
    """Caller-supplied value out of range (e.g. non-positive `days`)."""

    status_code = STATUS_BAD_REQUEST


class EmailDeliveryError(DevTrackerError):
    """The email provider rejected or could not accept a message."""

    status_code = STATUS_INTERNAL_ERROR


class ReportNotFound(DevTrackerError):
    status_code = STATUS_NOT_FOUND


class ReportExpired(ReportNotFound):
    pass


class ReportAccessDenied(DevTrackerError):
    status_code = STATUS_FORBIDDEN
