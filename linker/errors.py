"""Error taxonomy for the event-issue linker.

Remote failures are split into transient ones (safe to retry) and
permanent ones (retrying cannot help). Not-found on a link lookup is not
an error at all; it is an empty result.
"""

import json

import httplib2
from googleapiclient.errors import HttpError

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


class CalendarAPIError(Exception):
    """A Calendar API call failed."""

    def __init__(self, message: str, status: int | None = None, reason: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class TransientCalendarError(CalendarAPIError):
    """Rate limiting, server errors, timeouts and dropped connections."""


class PermanentCalendarError(CalendarAPIError):
    """Bad requests, missing permissions and other non-retryable failures."""


class EventNotFoundError(PermanentCalendarError):
    """The addressed event does not exist (404) or was deleted (410)."""


class DuplicateEventError(PermanentCalendarError):
    """An event with the supplied id already exists (409)."""


class AmbiguousLinkError(Exception):
    """More than one event carries the same issue link."""

    def __init__(self, issue_id: str, event_ids: list[str]) -> None:
        super().__init__(
            f"Issue {issue_id} is linked to {len(event_ids)} events: {', '.join(event_ids)}"
        )
        self.issue_id = issue_id
        self.event_ids = event_ids


class TokenExchangeError(Exception):
    """The authorization code could not be redeemed for a token pair."""


def _parse_http_error(error: HttpError) -> tuple[int, str, str]:
    """Extract (status, reason, message) from an HttpError."""
    status = int(error.resp.status)
    content: dict = {}
    try:
        content = json.loads(error.content.decode("utf-8"))
    except (ValueError, AttributeError):
        pass

    info = content.get("error", {}) if isinstance(content, dict) else {}
    if not isinstance(info, dict):
        info = {}
    errors = info.get("errors") or [{}]
    reason = errors[0].get("reason", "") if isinstance(errors[0], dict) else ""
    message = info.get("message") or str(error)
    return status, reason, message


def classify_error(error: Exception, operation: str) -> CalendarAPIError | None:
    """Map a transport-level exception to the linker's error taxonomy.

    Args:
        error: The exception raised while executing a request.
        operation: Human-readable operation name for the message.

    Returns:
        The matching CalendarAPIError, or None if the exception is not a
        remote failure and should propagate untouched.
    """
    if isinstance(error, HttpError):
        status, reason, message = _parse_http_error(error)
        label = f"HTTP {status} {reason}" if reason else f"HTTP {status}"
        text = f"{operation} failed: {label}: {message}"
        if status == 429 or 500 <= status < 600:
            return TransientCalendarError(text, status, reason)
        if status == 403 and reason in RATE_LIMIT_REASONS:
            return TransientCalendarError(text, status, reason)
        if status in (404, 410):
            return EventNotFoundError(text, status, reason)
        if status == 409:
            return DuplicateEventError(text, status, reason)
        return PermanentCalendarError(text, status, reason)

    if isinstance(error, (TimeoutError, ConnectionError, httplib2.HttpLib2Error)):
        return TransientCalendarError(f"{operation} failed: {type(error).__name__}: {error}")

    return None
