"""Event-Issue Linker - Core logic.

Creates, deletes, enumerates and re-links calendar events for issues.

In Google Calendar there are two kinds of events: single-occurring and
recurring. An occurrence of a recurring event is turned into an
independently editable event by updating it on its own id; that is how
one meeting of a series gets linked to one issue without touching the
series or its sibling occurrences.

Every lookup is a live query against the calendar. Nothing is cached
locally, so finding the event for an issue relies on the provider's
exact-match private extended property filter.
"""

import html
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Sequence

from linker.errors import AmbiguousLinkError, DuplicateEventError, EventNotFoundError
from linker.google_client import build_service, load_credentials
from linker.models import (
    ISSUE_ID,
    RECURRENCE,
    RECURRENCE_MARKER,
    CalendarEvent,
    EventOccurrence,
    SeriesTemplate,
    Singular,
)
from linker.retry import RetryPolicy, execute_with_retry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventIssueLinker:
    """Links issues to events on one calendar."""

    def __init__(
        self,
        service: Any,
        calendar_id: str,
        event_timezone: str = "Asia/Kolkata",
        issue_url_template: str = "{issue_id}",
        retry_policy: RetryPolicy | None = None,
        use_idempotency_keys: bool = True,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the EventIssueLinker.

        Args:
            service: A Calendar v3 service from google_client.build_service().
            calendar_id: Calendar all operations address.
            event_timezone: IANA timezone recurring events are expanded in.
            issue_url_template: Back-link template, formatted with issue_id.
            retry_policy: Backoff applied to transient failures.
            use_idempotency_keys: Send client-generated ids on insert so
                inserts can be retried without duplicating events.
            clock: Returns the current time; instance listings start there.
            sleep: Sleep function used between retries.
        """
        if not calendar_id:
            raise ValueError("calendar_id must not be empty")
        _check_issue_url_template(issue_url_template)
        self.service = service
        self.calendar_id = calendar_id
        self.event_timezone = event_timezone
        self.issue_url_template = issue_url_template
        self.retry_policy = retry_policy or RetryPolicy()
        self.use_idempotency_keys = use_idempotency_keys
        self.clock = clock
        self._retry_kwargs = {"sleep": sleep} if sleep else {}

    # ------------------------------------------------------------------
    # Single events
    # ------------------------------------------------------------------

    def add_event(
        self,
        title: str,
        description: str,
        meeting_url: str,
        start: str,
        end: str,
        issue_id: int | str,
    ) -> CalendarEvent:
        """Create a single-occurring event linked to an issue.

        There is no existence check: calling this twice for one issue
        creates two events.

        Args:
            title: Title of the event.
            description: Description of the event.
            meeting_url: Meeting link, also used as the location.
            start: RFC3339 start time.
            end: RFC3339 end time.
            issue_id: Issue the event is linked to, used to find it later.

        Returns:
            The created event.
        """
        issue = _issue_key(issue_id)
        agenda = self._issue_link(issue)
        body = {
            "summary": title,
            "description": _render_description(description, meeting_url, agenda),
            "start": {"dateTime": start},
            "end": {"dateTime": end},
            "location": meeting_url,
            "extendedProperties": {"private": Singular(issue).to_metadata()},
        }
        event = self._insert(body)
        logger.info("Event %s created for issue %s", event.id, issue)
        return event

    def find_events(self, issue_id: int | str) -> list[CalendarEvent]:
        """List every event linked to an issue, in provider order."""
        query = f"{ISSUE_ID}={_issue_key(issue_id)}"
        return [CalendarEvent.from_api(item) for item in self._list_events(query)]

    def delete_event(self, issue_id: int | str) -> str | None:
        """Delete the event linked to an issue.

        The lookup and the delete are two separate calls; an event created
        or removed in between is not accounted for.

        Args:
            issue_id: Issue whose event should be removed.

        Returns:
            The id of the deleted event, or None if no event is linked.

        Raises:
            AmbiguousLinkError: If more than one event carries the link.
                Nothing is deleted in that case.
        """
        issue = _issue_key(issue_id)
        events = self.find_events(issue)

        if not events:
            logger.info("No event found in calendar for issue %s", issue)
            return None

        if len(events) > 1:
            raise AmbiguousLinkError(issue, [e.id for e in events])

        event_id = events[0].id
        try:
            self._execute(
                lambda: self.service.events().delete(calendarId=self.calendar_id, eventId=event_id),
                "delete event",
            )
        except EventNotFoundError:
            logger.warning("Event %s for issue %s was already removed", event_id, issue)
            return event_id

        logger.info("Event %s deleted for issue %s", event_id, issue)
        return event_id

    def get_event(self, event_id: str) -> CalendarEvent:
        """Fetch one event or occurrence by id."""
        resource = self._execute(
            lambda: self.service.events().get(calendarId=self.calendar_id, eventId=event_id),
            "get event",
        )
        return CalendarEvent.from_api(resource)

    # ------------------------------------------------------------------
    # Recurring events
    # ------------------------------------------------------------------

    def list_events(self) -> list[CalendarEvent]:
        """List all recurring series created by the linker.

        Single events are never included, and neither are occurrences that
        were detached from a series even though they inherit its marker.
        """
        query = f"{RECURRENCE}={RECURRENCE_MARKER}"
        series = []
        for item in self._list_events(query):
            event = CalendarEvent.from_api(item)
            if isinstance(event, EventOccurrence) or not event.is_series:
                continue
            series.append(event)
        return series

    def list_instances(self, series_id: str) -> list[EventOccurrence]:
        """List the occurrences of a series that are yet to end.

        The calendar applies timeMin to an occurrence's end time, so a
        meeting already in progress is still listed.

        Args:
            series_id: ID of a recurring event.

        Returns:
            Occurrences ending after now, as returned by the calendar.
        """
        time_min = self.clock().astimezone(timezone.utc).isoformat()
        occurrences = []
        for item in self._paginate(
            lambda token: self.service.events().instances(
                calendarId=self.calendar_id,
                eventId=series_id,
                timeMin=time_min,
                pageToken=token,
            ),
            "list instances",
        ):
            event = CalendarEvent.from_api(item)
            if not isinstance(event, EventOccurrence):
                event = EventOccurrence(series_id=series_id, **_fields(event))
            occurrences.append(event)
        return occurrences

    def add_recurring_event(
        self,
        title: str,
        description: str,
        meeting_url: str,
        start: str,
        end: str,
        recurrence: str | Sequence[str],
    ) -> CalendarEvent:
        """Create a recurring event.

        Start and end carry the configured timezone so the recurrence is
        expanded correctly across daylight-saving changes. The series is
        never linked to an issue; its occurrences are, via update_instance.

        Args:
            title: Title of the event.
            description: Description of the event.
            meeting_url: Meeting link, also used as the location.
            start: RFC3339 start time of the first occurrence.
            end: RFC3339 end time of the first occurrence.
            recurrence: One RFC5545 rule string, or several.

        Returns:
            The created series.
        """
        rules = [recurrence] if isinstance(recurrence, str) else list(recurrence)
        if not rules:
            raise ValueError("At least one recurrence rule is required")

        body = {
            "summary": title,
            "description": _render_description(description, meeting_url, "NA"),
            "start": {"dateTime": start, "timeZone": self.event_timezone},
            "end": {"dateTime": end, "timeZone": self.event_timezone},
            "recurrence": rules,
            "location": meeting_url,
            "extendedProperties": {"private": SeriesTemplate().to_metadata()},
        }
        event = self._insert(body)
        logger.info("Recurring event %s created (%s)", event.id, "; ".join(rules))
        return event

    def update_instance(self, occurrence: EventOccurrence, issue_id: int | str) -> EventOccurrence:
        """Link one occurrence of a recurring event to an issue.

        Updating a single occurrence detaches it from the series: later edits
        to the series no longer apply to it. The series itself is not written.

        Args:
            occurrence: Occurrence from list_instances() or get_event().
            issue_id: Issue to link to.

        Returns:
            The occurrence as stored by the calendar.
        """
        issue = _issue_key(issue_id)
        occurrence.attach_issue(issue)
        body = occurrence.to_body()

        resource = self._execute(
            lambda: self.service.events().update(
                calendarId=self.calendar_id,
                eventId=occurrence.id,
                body=body,
            ),
            "update instance",
        )
        updated = CalendarEvent.from_api(resource)
        if not isinstance(updated, EventOccurrence):
            updated = EventOccurrence(series_id=occurrence.series_id, **_fields(updated))
        logger.info("Occurrence %s of %s linked to issue %s", occurrence.id, occurrence.series_id, issue)
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_link(self, issue: str) -> str:
        url = html.escape(self.issue_url_template.format(issue_id=issue), quote=True)
        return f'<a href="{url}">Issue Link</a>'

    def _execute(self, request_factory: Callable[[], Any], operation: str, idempotent: bool = True) -> Any:
        return execute_with_retry(
            request_factory, operation, self.retry_policy, idempotent=idempotent, **self._retry_kwargs
        )

    def _insert(self, body: dict[str, Any]) -> CalendarEvent:
        """Insert an event, retrying only when an idempotency key is sent."""
        if not self.use_idempotency_keys:
            resource = self._execute(
                lambda: self.service.events().insert(calendarId=self.calendar_id, body=body),
                "insert event",
                idempotent=False,
            )
            return CalendarEvent.from_api(resource)

        body = {**body, "id": _new_event_id()}
        try:
            resource = self._execute(
                lambda: self.service.events().insert(calendarId=self.calendar_id, body=body),
                "insert event",
            )
        except DuplicateEventError:
            # An earlier attempt landed but its response was lost
            logger.info("Event %s already exists, fetching it", body["id"])
            return self.get_event(body["id"])
        return CalendarEvent.from_api(resource)

    def _list_events(self, private_property: str) -> Iterator[dict[str, Any]]:
        return self._paginate(
            lambda token: self.service.events().list(
                calendarId=self.calendar_id,
                privateExtendedProperty=private_property,
                pageToken=token,
            ),
            "list events",
        )

    def _paginate(self, request_for_page: Callable[[str | None], Any], operation: str) -> Iterator[dict[str, Any]]:
        """Yield items across all result pages."""
        token = None
        while True:
            page = self._execute(lambda: request_for_page(token), operation)
            yield from page.get("items", [])
            token = page.get("nextPageToken")
            if not token:
                return


def create_linker(settings: Any) -> EventIssueLinker:
    """Build a linker from Settings, loading credentials once."""
    creds = load_credentials(settings.google_token_path, settings.google_service_account_path)
    service = build_service(creds, timeout=settings.request_timeout)
    return EventIssueLinker(
        service=service,
        calendar_id=settings.calendar_id,
        event_timezone=settings.event_timezone,
        issue_url_template=settings.issue_url_template,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            initial_backoff=settings.retry_initial_backoff,
            max_backoff=settings.retry_max_backoff,
        ),
        use_idempotency_keys=settings.use_idempotency_keys,
    )


def _issue_key(issue_id: int | str) -> str:
    """Issue ids are stored and matched as exact strings."""
    key = str(issue_id)
    if not key.strip():
        raise ValueError("issue_id must not be empty")
    if key != key.strip():
        raise ValueError(f"issue_id must not have surrounding whitespace: {key!r}")
    return key


def _check_issue_url_template(template: str) -> None:
    """Fail at startup for templates with placeholders other than issue_id."""
    try:
        template.format(issue_id="0")
    except (KeyError, IndexError, ValueError) as e:
        raise ValueError(f"Invalid issue URL template {template!r}: {e}") from e


def _new_event_id() -> str:
    # Calendar event ids use base32hex characters; hex digits are a subset
    return uuid.uuid4().hex


def _render_description(description: str, meeting_url: str, agenda: str) -> str:
    url = html.escape(meeting_url, quote=True)
    return f'{description}<br><b>Zoom</b>: <a href="{url}">Meeting Link</a><br><b>Agenda</b>: {agenda}'


def _fields(event: CalendarEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start": event.start,
        "end": event.end,
        "timezone": event.timezone,
        "recurrence": event.recurrence,
        "private_metadata": event.private_metadata,
        "raw": event.raw,
    }
