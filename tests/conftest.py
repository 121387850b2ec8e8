"""Shared fixtures."""

import pytest

from linker.linker import EventIssueLinker
from linker.retry import RetryPolicy
from tests.fakes import FIXED_NOW, FakeCalendarService


@pytest.fixture
def fake_service() -> FakeCalendarService:
    return FakeCalendarService()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def linker(fake_service, sleeps) -> EventIssueLinker:
    return EventIssueLinker(
        service=fake_service,
        calendar_id="team@group.calendar.google.com",
        event_timezone="Asia/Kolkata",
        issue_url_template="https://github.com/acme/meetings/issues/{issue_id}",
        retry_policy=RetryPolicy(max_attempts=3, initial_backoff=0.5, jitter=0.0),
        clock=lambda: FIXED_NOW,
        sleep=sleeps.append,
    )
