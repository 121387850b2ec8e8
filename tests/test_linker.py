"""Tests for the Event-Issue Linker - core operations against a fake calendar."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from config.settings import Settings
from linker.errors import AmbiguousLinkError, PermanentCalendarError, TransientCalendarError
from linker.linker import EventIssueLinker, create_linker
from linker.models import ISSUE_ID, RECURRENCE, EventOccurrence
from linker.retry import RetryPolicy
from tests.fakes import FakeCalendarService, make_http_error

SYNC = dict(
    title="Sync",
    description="desc",
    meeting_url="https://zoom.example/1",
    start="2022-02-06T18:00:00+05:30",
    end="2022-02-06T19:00:00+05:30",
)


def _add(linker: EventIssueLinker, issue_id) -> None:
    linker.add_event(
        title="Planning",
        description="Quarterly planning",
        meeting_url="https://zoom.example/2",
        start="2022-03-01T10:00:00+05:30",
        end="2022-03-01T11:00:00+05:30",
        issue_id=issue_id,
    )


# ---------------------------------------------------------------------------
# add_event / delete_event
# ---------------------------------------------------------------------------


class TestAddEvent:
    def test_creates_linked_singular_event(self, linker, fake_service) -> None:
        _add(linker, 7)

        found = linker.find_events(7)
        assert len(found) == 1
        event = found[0]
        assert event.private_metadata == {ISSUE_ID: "7"}
        assert event.recurrence is None
        assert event.location == "https://zoom.example/2"
        assert event.start == "2022-03-01T10:00:00+05:30"

    def test_description_embeds_meeting_and_issue_links(self, linker) -> None:
        event = linker.add_event(issue_id=12, **SYNC)
        assert event.description.startswith("desc<br><b>Zoom</b>: ")
        assert '<a href="https://zoom.example/1">Meeting Link</a>' in event.description
        assert '<a href="https://github.com/acme/meetings/issues/12">Issue Link</a>' in event.description

    def test_not_idempotent(self, linker) -> None:
        _add(linker, 3)
        _add(linker, 3)

        found = linker.find_events(3)
        assert len(found) == 2
        assert found[0].id != found[1].id
        assert all(e.issue_id == "3" for e in found)

    def test_sends_client_generated_id(self, linker, fake_service) -> None:
        event = linker.add_event(issue_id=1, **SYNC)
        assert len(event.id) == 32
        assert event.id in fake_service.events_by_id

    def test_empty_issue_id_rejected(self, linker) -> None:
        with pytest.raises(ValueError):
            linker.add_event(issue_id="  ", **SYNC)

    def test_lost_insert_response_does_not_duplicate(self, linker, fake_service, sleeps) -> None:
        fake_service.lose_insert_responses = 1

        event = linker.add_event(issue_id=5, **SYNC)

        assert len(fake_service.events_by_id) == 1
        assert event.id in fake_service.events_by_id
        assert len(sleeps) == 1
        assert [c[0] for c in fake_service.calls] == ["insert", "insert", "get"]

    def test_insert_not_retried_without_idempotency_keys(self, fake_service) -> None:
        linker = EventIssueLinker(
            service=fake_service,
            calendar_id="primary",
            use_idempotency_keys=False,
            sleep=lambda s: None,
        )
        fake_service.lose_insert_responses = 1

        with pytest.raises(TransientCalendarError):
            linker.add_event(issue_id=5, **SYNC)
        assert [c[0] for c in fake_service.calls] == ["insert"]


class TestDeleteEvent:
    def test_no_match_is_noop(self, linker, fake_service) -> None:
        assert linker.delete_event(99) is None
        assert not any(c[0] == "delete" for c in fake_service.calls)

    def test_deletes_linked_event(self, linker, fake_service) -> None:
        _add(linker, 4)
        _add(linker, 5)

        deleted = linker.delete_event(4)

        assert deleted is not None
        assert linker.find_events(4) == []
        assert len(linker.find_events(5)) == 1

    def test_lookup_is_exact_match(self, linker) -> None:
        _add(linker, 4)
        assert linker.delete_event(40) is None
        assert linker.delete_event("04") is None
        assert len(linker.find_events(4)) == 1

    def test_padded_issue_id_rejected(self, linker) -> None:
        _add(linker, 4)
        for padded in (" 4", "4 ", "\t4"):
            with pytest.raises(ValueError):
                linker.delete_event(padded)
        assert len(linker.find_events("4")) == 1

    def test_ambiguous_link_raises_and_deletes_nothing(self, linker, fake_service) -> None:
        _add(linker, 8)
        _add(linker, 8)

        with pytest.raises(AmbiguousLinkError) as exc_info:
            linker.delete_event(8)

        assert exc_info.value.issue_id == "8"
        assert len(exc_info.value.event_ids) == 2
        assert len(linker.find_events(8)) == 2

    def test_already_removed_event_is_tolerated(self, linker, fake_service) -> None:
        _add(linker, 6)
        event_id = linker.find_events(6)[0].id
        original = fake_service.do_delete

        def delete_twice(eid):
            original(eid)
            return original(eid)

        fake_service.do_delete = delete_twice
        assert linker.delete_event(6) == event_id


# ---------------------------------------------------------------------------
# Recurring events
# ---------------------------------------------------------------------------


class TestAddRecurringEvent:
    def test_creates_unlinked_series(self, linker, fake_service) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)

        stored = fake_service.events_by_id[series.id]
        assert stored["recurrence"] == ["RRULE:FREQ=WEEKLY;COUNT=4"]
        assert stored["start"] == {"dateTime": SYNC["start"], "timeZone": "Asia/Kolkata"}
        assert stored["end"] == {"dateTime": SYNC["end"], "timeZone": "Asia/Kolkata"}
        assert stored["extendedProperties"]["private"] == {RECURRENCE: "TRUE"}
        assert stored["description"].endswith("<b>Agenda</b>: NA")
        assert series.issue_id is None

    def test_multiple_rules_kept_in_order(self, linker, fake_service) -> None:
        rules = ["RRULE:FREQ=WEEKLY;COUNT=4", "EXDATE;TZID=Asia/Kolkata:20220213T180000"]
        series = linker.add_recurring_event(recurrence=rules, **SYNC)
        assert fake_service.events_by_id[series.id]["recurrence"] == rules

    def test_empty_rules_rejected(self, linker) -> None:
        with pytest.raises(ValueError):
            linker.add_recurring_event(recurrence=[], **SYNC)


class TestListEvents:
    def test_only_series_are_listed(self, linker) -> None:
        _add(linker, 1)
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)

        listed = linker.list_events()

        assert [s.id for s in listed] == [series.id]
        assert all(s.private_metadata.get(RECURRENCE) == "TRUE" for s in listed)

    def test_linked_occurrences_are_not_listed(self, linker) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        occurrence = linker.list_instances(series.id)[0]
        linker.update_instance(occurrence, 42)

        listed = linker.list_events()

        assert [s.id for s in listed] == [series.id]
        assert not any(isinstance(s, EventOccurrence) for s in listed)

    def test_follows_all_pages(self, sleeps) -> None:
        service = FakeCalendarService(page_size=2)
        linker = EventIssueLinker(service=service, calendar_id="primary", sleep=sleeps.append)
        for _ in range(5):
            linker.add_recurring_event(recurrence="RRULE:FREQ=DAILY;COUNT=2", **SYNC)

        assert len(linker.list_events()) == 5


class TestListInstances:
    def test_weekly_count_four(self, linker) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)

        occurrences = linker.list_instances(series.id)

        assert len(occurrences) == 4
        starts = [datetime.fromisoformat(o.start) for o in occurrences]
        assert all(b - a == timedelta(days=7) for a, b in zip(starts, starts[1:]))
        assert all(o.issue_id is None for o in occurrences)
        assert all(o.series_id == series.id for o in occurrences)
        assert len({o.id for o in occurrences} | {series.id}) == 5

    def test_past_occurrences_excluded(self, fake_service) -> None:
        now = datetime(2022, 2, 14, tzinfo=timezone.utc)
        linker = EventIssueLinker(service=fake_service, calendar_id="primary", clock=lambda: now)
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)

        occurrences = linker.list_instances(series.id)

        assert len(occurrences) == 2
        assert all(datetime.fromisoformat(o.end) > now for o in occurrences)

    def test_in_progress_occurrence_is_listed(self, fake_service) -> None:
        # 13:00Z falls inside the second occurrence (12:30Z to 13:30Z)
        now = datetime(2022, 2, 13, 13, 0, tzinfo=timezone.utc)
        linker = EventIssueLinker(service=fake_service, calendar_id="primary", clock=lambda: now)
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)

        occurrences = linker.list_instances(series.id)

        assert len(occurrences) == 3
        assert occurrences[0].start == "2022-02-13T18:00:00+05:30"
        assert datetime.fromisoformat(occurrences[0].start) < now < datetime.fromisoformat(occurrences[0].end)
        assert all(datetime.fromisoformat(o.start) > now for o in occurrences[1:])

    def test_time_min_sent_to_calendar(self) -> None:
        service = MagicMock()
        service.events.return_value.instances.return_value.execute.return_value = {"items": []}
        linker = EventIssueLinker(
            service=service,
            calendar_id="primary",
            clock=lambda: datetime(2022, 2, 1, 12, 0, tzinfo=timezone.utc),
        )

        linker.list_instances("series1")

        service.events.return_value.instances.assert_called_once_with(
            calendarId="primary",
            eventId="series1",
            timeMin="2022-02-01T12:00:00+00:00",
            pageToken=None,
        )


class TestUpdateInstance:
    def test_links_only_the_targeted_occurrence(self, linker, fake_service) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        series_before = dict(fake_service.events_by_id[series.id]["extendedProperties"]["private"])
        occurrences = linker.list_instances(series.id)

        updated = linker.update_instance(occurrences[0], 42)

        assert updated.id == occurrences[0].id
        assert updated.private_metadata[ISSUE_ID] == "42"
        assert fake_service.events_by_id[series.id]["extendedProperties"]["private"] == series_before

        again = linker.list_instances(series.id)
        assert len(again) == len(occurrences)
        assert again[0].issue_id == "42"
        assert all(o.issue_id is None for o in again[1:])

    def test_update_addressed_by_occurrence_id(self, linker, fake_service) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        occurrence = linker.list_instances(series.id)[1]

        linker.update_instance(occurrence, 9)

        updates = [c for c in fake_service.calls if c[0] == "update"]
        assert updates == [("update", occurrence.id)]

    def test_metadata_copy_on_write(self, linker) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        occurrence = linker.list_instances(series.id)[0]
        shared = occurrence.private_metadata

        linker.update_instance(occurrence, 42)

        assert ISSUE_ID not in shared
        assert occurrence.private_metadata[ISSUE_ID] == "42"

    def test_relinking_replaces_issue(self, linker) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        occurrence = linker.list_instances(series.id)[0]

        linker.update_instance(occurrence, 1)
        linked = linker.list_instances(series.id)[0]
        linker.update_instance(linked, 2)

        assert linker.list_instances(series.id)[0].private_metadata[ISSUE_ID] == "2"
        assert linker.find_events(1) == []

    def test_linked_occurrence_deleted_by_issue(self, linker) -> None:
        series = linker.add_recurring_event(recurrence="RRULE:FREQ=WEEKLY;COUNT=4", **SYNC)
        occurrence = linker.list_instances(series.id)[2]
        linker.update_instance(occurrence, 77)

        assert linker.delete_event(77) == occurrence.id


# ---------------------------------------------------------------------------
# Retries and errors
# ---------------------------------------------------------------------------


class TestRemoteFailures:
    def _linker(self, service: MagicMock, sleeps: list) -> EventIssueLinker:
        return EventIssueLinker(
            service=service,
            calendar_id="primary",
            retry_policy=RetryPolicy(max_attempts=3, jitter=0.0),
            sleep=sleeps.append,
        )

    def test_list_retried_on_rate_limit(self, sleeps) -> None:
        service = MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = [
            make_http_error(403, "rateLimitExceeded"),
            {"items": []},
        ]
        assert self._linker(service, sleeps).list_events() == []
        assert sleeps == [1.0]

    def test_permanent_error_propagates_without_retry(self, sleeps) -> None:
        service = MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = make_http_error(403, "forbidden")

        with pytest.raises(PermanentCalendarError):
            self._linker(service, sleeps).delete_event(1)
        assert sleeps == []

    def test_transient_error_gives_up_after_bound(self, sleeps) -> None:
        service = MagicMock()
        service.events.return_value.instances.return_value.execute.side_effect = make_http_error(500)

        with pytest.raises(TransientCalendarError):
            self._linker(service, sleeps).list_instances("abc")
        assert service.events.return_value.instances.return_value.execute.call_count == 3
        assert sleeps == [1.0, 2.0]


class TestCreateLinker:
    @patch("linker.linker.build_service")
    @patch("linker.linker.load_credentials")
    def test_wires_settings(self, mock_load, mock_build) -> None:
        settings = Settings(
            google_token_path="tok.json",
            calendar_id="team@example.com",
            event_timezone="Europe/Berlin",
            request_timeout=12,
            retry_max_attempts=6,
        )

        linker = create_linker(settings)

        mock_load.assert_called_once_with("tok.json", "")
        mock_build.assert_called_once_with(mock_load.return_value, timeout=12)
        assert linker.service is mock_build.return_value
        assert linker.calendar_id == "team@example.com"
        assert linker.event_timezone == "Europe/Berlin"
        assert linker.retry_policy.max_attempts == 6

    def test_empty_calendar_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            EventIssueLinker(service=MagicMock(), calendar_id="")

    def test_unknown_template_placeholder_rejected(self) -> None:
        with pytest.raises(ValueError) as exc_info:
            EventIssueLinker(
                service=MagicMock(),
                calendar_id="primary",
                issue_url_template="https://x/{owner}/issues/{issue_id}",
            )
        assert "owner" in str(exc_info.value)

    @patch("linker.linker.build_service")
    @patch("linker.linker.load_credentials")
    def test_bad_template_fails_at_startup(self, mock_load, mock_build) -> None:
        settings = Settings(issue_url_template="https://x/issues/{}")
        with pytest.raises(ValueError):
            create_linker(settings)
