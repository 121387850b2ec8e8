"""Event-Issue Linker HTTP Server.

Flask server exposing the linker operations as JSON endpoints, so issue
tracker automation (webhooks, CI jobs) can create and remove meetings:

- POST   /events                      create a single event for an issue
- DELETE /events/<issue_id>           delete the event linked to an issue
- GET    /series                      list recurring series
- POST   /series                      create a recurring series
- GET    /series/<series_id>/instances  list upcoming occurrences
- PUT    /instances/<instance_id>/issue link one occurrence to an issue
"""

import logging

from flask import Flask, Response, jsonify, request

from config.settings import load_settings
from linker.errors import (
    AmbiguousLinkError,
    CalendarAPIError,
    EventNotFoundError,
    TransientCalendarError,
)
from linker.linker import EventIssueLinker, create_linker
from linker.models import EventOccurrence
from linker.validator import (
    validate_add_event_request,
    validate_add_series_request,
    validate_issue_id,
    validate_link_request,
)

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Linker instance (initialized on first request)
_linker: EventIssueLinker | None = None


def set_linker(linker: EventIssueLinker) -> None:
    """Use an already-built linker, e.g. one created at startup."""
    global _linker
    _linker = linker


def _get_linker() -> EventIssueLinker:
    """Get or initialize the EventIssueLinker instance."""
    global _linker
    if _linker is None:
        _linker = create_linker(load_settings())
    return _linker


def _error(code: str, message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": {"code": code, "message": message}}), status


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.errorhandler(AmbiguousLinkError)
def handle_ambiguous_link(e: AmbiguousLinkError) -> tuple[Response, int]:
    logger.error("%s", e)
    return _error("AmbiguousLinkError", str(e), 409)


@app.errorhandler(CalendarAPIError)
def handle_calendar_error(e: CalendarAPIError) -> tuple[Response, int]:
    logger.error("Calendar API error: %s", e)
    if isinstance(e, EventNotFoundError):
        return _error("EventNotFoundError", str(e), 404)
    if isinstance(e, TransientCalendarError):
        return _error("TransientCalendarError", str(e), 503)
    return _error("CalendarAPIError", str(e), 502)


# ---------------------------------------------------------------------------
# Single events
# ---------------------------------------------------------------------------


@app.route("/events", methods=["POST"])
def add_event() -> tuple[Response, int]:
    """Create a single event linked to an issue."""
    payload = request.get_json(silent=True)
    is_valid, err = validate_add_event_request(payload)
    if not is_valid:
        logger.error("Invalid add event request: %s", err)
        return _error("InvalidRequestError", err, 400)

    event = _get_linker().add_event(
        title=payload["title"],
        description=payload["description"],
        meeting_url=payload["meeting_url"],
        start=payload["start"],
        end=payload["end"],
        issue_id=payload["issue_id"],
    )
    return jsonify(event.to_dict()), 201


@app.route("/events/<issue_id>", methods=["DELETE"])
def delete_event(issue_id: str) -> tuple[Response, int]:
    """Delete the event linked to an issue. A missing event is not an error."""
    is_valid, err = validate_issue_id(issue_id)
    if not is_valid:
        logger.error("Invalid delete request: %s", err)
        return _error("InvalidRequestError", err, 400)

    deleted = _get_linker().delete_event(issue_id)
    return jsonify({"deleted": deleted}), 200


# ---------------------------------------------------------------------------
# Recurring events
# ---------------------------------------------------------------------------


@app.route("/series", methods=["GET"])
def list_series() -> tuple[Response, int]:
    series = _get_linker().list_events()
    return jsonify({"series": [s.to_dict() for s in series]}), 200


@app.route("/series", methods=["POST"])
def add_series() -> tuple[Response, int]:
    """Create a recurring event."""
    payload = request.get_json(silent=True)
    is_valid, err = validate_add_series_request(payload)
    if not is_valid:
        logger.error("Invalid add series request: %s", err)
        return _error("InvalidRequestError", err, 400)

    event = _get_linker().add_recurring_event(
        title=payload["title"],
        description=payload["description"],
        meeting_url=payload["meeting_url"],
        start=payload["start"],
        end=payload["end"],
        recurrence=payload["recurrence"],
    )
    return jsonify(event.to_dict()), 201


@app.route("/series/<series_id>/instances", methods=["GET"])
def list_instances(series_id: str) -> tuple[Response, int]:
    occurrences = _get_linker().list_instances(series_id)
    return jsonify({"instances": [o.to_dict() for o in occurrences]}), 200


@app.route("/instances/<instance_id>/issue", methods=["PUT"])
def link_instance(instance_id: str) -> tuple[Response, int]:
    """Link one occurrence of a series to an issue."""
    payload = request.get_json(silent=True)
    is_valid, err = validate_link_request(payload)
    if not is_valid:
        logger.error("Invalid link request: %s", err)
        return _error("InvalidRequestError", err, 400)

    linker = _get_linker()
    occurrence = linker.get_event(instance_id)
    if not isinstance(occurrence, EventOccurrence):
        return _error("InvalidRequestError", f"Event {instance_id} is not an occurrence of a series.", 400)

    updated = linker.update_instance(occurrence, payload["issue_id"])
    return jsonify(updated.to_dict()), 200


# ---------------------------------------------------------------------------
# Standalone run
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    print(f"Event-Issue Linker starting on port {settings.linker_port}...")
    app.run(host=settings.linker_host, port=settings.linker_port, debug=False)
