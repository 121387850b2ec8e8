"""Request validation for the linker's HTTP surface.

Validates JSON bodies before they reach the linker, so a malformed
request is rejected with a clear message instead of failing at the
Calendar API.
"""

from datetime import datetime

RECURRENCE_PREFIXES = ("RRULE:", "EXRULE:", "RDATE", "EXDATE")

EVENT_FIELDS = ("title", "description", "meeting_url", "start", "end")


def validate_timestamp(value: object, name: str) -> tuple[bool, str]:
    """Validate an RFC3339 timestamp with an explicit offset.

    Args:
        value: The value to check.
        name: Field name for the error message.

    Returns:
        (is_valid, error_description).
    """
    if not isinstance(value, str) or not value:
        return False, f"'{name}' must be a non-empty RFC3339 string."
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False, f"'{name}' is not a valid RFC3339 timestamp: {value}"
    if parsed.tzinfo is None:
        return False, f"'{name}' must include a UTC offset: {value}"
    return True, ""


def validate_issue_id(value: object) -> tuple[bool, str]:
    """An issue id is a non-empty string or a non-negative integer."""
    if isinstance(value, bool):
        return False, "'issue_id' must be a string or an integer."
    if isinstance(value, int):
        if value < 0:
            return False, "'issue_id' must not be negative."
        return True, ""
    if isinstance(value, str) and value.strip():
        if value != value.strip():
            return False, "'issue_id' must not have leading or trailing whitespace."
        return True, ""
    return False, "'issue_id' must be a non-empty string or an integer."


def validate_recurrence(value: object) -> tuple[bool, str]:
    """Validate one RFC5545 recurrence line or a non-empty list of them."""
    rules = [value] if isinstance(value, str) else value
    if not isinstance(rules, list) or len(rules) == 0:
        return False, "'recurrence' must be a rule string or a non-empty list of rule strings."
    for rule in rules:
        if not isinstance(rule, str) or not rule.upper().startswith(RECURRENCE_PREFIXES):
            return False, f"Invalid recurrence rule: {rule!r}"
    return True, ""


def _validate_event_fields(payload: object) -> tuple[bool, str]:
    if not isinstance(payload, dict):
        return False, "Request body must be a JSON object."

    for name in EVENT_FIELDS:
        if name not in payload:
            return False, f"Request must include '{name}'."
    for name in ("title", "meeting_url"):
        if not isinstance(payload[name], str) or not payload[name]:
            return False, f"'{name}' must be a non-empty string."
    if not isinstance(payload["description"], str):
        return False, "'description' must be a string."

    for name in ("start", "end"):
        is_valid, err = validate_timestamp(payload[name], name)
        if not is_valid:
            return False, err

    start = datetime.fromisoformat(payload["start"].replace("Z", "+00:00"))
    end = datetime.fromisoformat(payload["end"].replace("Z", "+00:00"))
    if end <= start:
        return False, "'end' must be after 'start'."

    return True, ""


def validate_add_event_request(payload: object) -> tuple[bool, str]:
    """Validate a request to create a single event linked to an issue.

    Required fields: title, description, meeting_url, start, end, issue_id.

    Returns:
        (is_valid, error_description).
    """
    is_valid, err = _validate_event_fields(payload)
    if not is_valid:
        return False, err
    if "issue_id" not in payload:
        return False, "Request must include 'issue_id'."
    return validate_issue_id(payload["issue_id"])


def validate_add_series_request(payload: object) -> tuple[bool, str]:
    """Validate a request to create a recurring event.

    Required fields: title, description, meeting_url, start, end, recurrence.
    A series is never linked to an issue, so issue_id is rejected.

    Returns:
        (is_valid, error_description).
    """
    is_valid, err = _validate_event_fields(payload)
    if not is_valid:
        return False, err
    if "issue_id" in payload:
        return False, "A recurring event cannot be linked to an issue; link an instance instead."
    if "recurrence" not in payload:
        return False, "Request must include 'recurrence'."
    return validate_recurrence(payload["recurrence"])


def validate_link_request(payload: object) -> tuple[bool, str]:
    """Validate a request to link an occurrence to an issue."""
    if not isinstance(payload, dict):
        return False, "Request body must be a JSON object."
    if "issue_id" not in payload:
        return False, "Request must include 'issue_id'."
    return validate_issue_id(payload["issue_id"])
