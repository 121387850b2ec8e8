"""Calendar event model and issue-link roles.

The Calendar API stores issue links as flat private extended properties.
Inside the linker an event's purpose is an explicit EventRole; the flat
mapping is produced and read only at the API boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Union

ISSUE_ID = "ISSUE_ID"
RECURRENCE = "RECURRENCE"
RECURRENCE_MARKER = "TRUE"


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Singular:
    """A one-off event created for one issue."""

    issue_id: str

    def to_metadata(self) -> dict[str, str]:
        return {ISSUE_ID: self.issue_id}


@dataclass(frozen=True)
class SeriesTemplate:
    """A recurring event. Never linked to an issue itself."""

    def to_metadata(self) -> dict[str, str]:
        return {RECURRENCE: RECURRENCE_MARKER}


@dataclass(frozen=True)
class LinkedOccurrence:
    """One occurrence of a series, detached from it by acquiring a link."""

    issue_id: str

    def to_metadata(self) -> dict[str, str]:
        return {RECURRENCE: RECURRENCE_MARKER, ISSUE_ID: self.issue_id}


@dataclass(frozen=True)
class UnlinkedOccurrence:
    """An occurrence still governed entirely by its series."""

    def to_metadata(self) -> dict[str, str]:
        return {RECURRENCE: RECURRENCE_MARKER}


EventRole = Union[Singular, SeriesTemplate, LinkedOccurrence, UnlinkedOccurrence]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass
class CalendarEvent:
    """A calendar event as the linker sees it."""

    id: str
    title: str = ""
    description: str = ""
    location: str = ""
    start: str = ""
    end: str = ""
    timezone: str = ""
    recurrence: list[str] | None = None
    private_metadata: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_series(self) -> bool:
        return bool(self.recurrence)

    @property
    def issue_id(self) -> str | None:
        return self.private_metadata.get(ISSUE_ID)

    @classmethod
    def from_api(cls, resource: dict[str, Any]) -> "CalendarEvent":
        """Build an event from a Calendar API event resource.

        Resources that belong to a series (they carry recurringEventId)
        become EventOccurrence instances.
        """
        start = resource.get("start", {})
        end = resource.get("end", {})
        private = resource.get("extendedProperties", {}).get("private", {})

        kwargs: dict[str, Any] = {
            "id": resource.get("id", ""),
            "title": resource.get("summary", ""),
            "description": resource.get("description", ""),
            "location": resource.get("location", ""),
            # All-day events use "date", timed events use "dateTime"
            "start": start.get("dateTime", start.get("date", "")),
            "end": end.get("dateTime", end.get("date", "")),
            "timezone": start.get("timeZone", ""),
            "recurrence": list(resource["recurrence"]) if resource.get("recurrence") else None,
            "private_metadata": dict(private),
            "raw": resource,
        }

        series_id = resource.get("recurringEventId")
        if series_id:
            return EventOccurrence(series_id=series_id, **kwargs)
        return cls(**kwargs)

    def to_body(self) -> dict[str, Any]:
        """Render the event as a Calendar API request body.

        Fields the linker does not model are carried over from the raw
        resource so an update never drops them.
        """
        body = dict(self.raw)
        body.update(
            {
                "summary": self.title,
                "description": self.description,
                "location": self.location,
                "start": _time_field(self.start, self.timezone, body.get("start")),
                "end": _time_field(self.end, self.timezone, body.get("end")),
            }
        )
        if self.id:
            body["id"] = self.id
        if self.recurrence:
            body["recurrence"] = list(self.recurrence)

        extended = dict(body.get("extendedProperties", {}))
        extended["private"] = dict(self.private_metadata)
        body["extendedProperties"] = extended
        return body

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-serializable view, used by the HTTP surface."""
        role = role_of(self)
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start": self.start,
            "end": self.end,
            "timezone": self.timezone,
            "recurrence": self.recurrence,
            "issue_id": self.issue_id,
            "role": type(role).__name__ if role else None,
        }


@dataclass
class EventOccurrence(CalendarEvent):
    """A single expansion of a series, addressable by its own id."""

    series_id: str = ""

    def attach_issue(self, issue_id: str) -> None:
        """Attach an issue link.

        The metadata mapping is replaced, never mutated, so a mapping shared
        with the series object stays untouched.
        """
        self.private_metadata = {**self.private_metadata, ISSUE_ID: issue_id}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["series_id"] = self.series_id
        return data


def _time_field(value: str, timezone: str, original: dict[str, Any] | None) -> dict[str, str]:
    """Build a start/end field, keeping all-day events as dates."""
    if original and "date" in original and "dateTime" not in original:
        return dict(original)
    result = {"dateTime": value}
    if timezone:
        result["timeZone"] = timezone
    return result


def role_of(event: CalendarEvent) -> EventRole | None:
    """Derive the role of an event from its structure and metadata.

    Returns:
        The event's role, or None for events the linker does not manage.
    """
    issue_id = event.private_metadata.get(ISSUE_ID)

    if isinstance(event, EventOccurrence):
        if issue_id is not None:
            return LinkedOccurrence(issue_id)
        return UnlinkedOccurrence()

    if event.is_series and event.private_metadata.get(RECURRENCE) == RECURRENCE_MARKER:
        return SeriesTemplate()

    if issue_id is not None:
        return Singular(issue_id)

    return None
