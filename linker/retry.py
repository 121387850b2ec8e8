"""Retry policy for Calendar API requests.

Transient failures are retried with exponential backoff and random jitter,
up to a bounded number of attempts. Only idempotent requests are retried;
a non-idempotent request gets exactly one attempt.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

from linker.errors import TransientCalendarError, classify_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    max_attempts: int = 4
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 30.0
    jitter: float = 0.1

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (0-indexed)."""
        base = min(self.initial_backoff * self.multiplier**attempt, self.max_backoff)
        spread = base * self.jitter * (2 * random.random() - 1)
        return max(0.0, base + spread)


def execute_with_retry(
    request_factory: Callable[[], Any],
    operation: str,
    policy: RetryPolicy,
    idempotent: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute a Google API request, retrying transient failures.

    Args:
        request_factory: Builds a fresh HttpRequest on each attempt
            (e.g. lambda: service.events().list(...)).
        operation: Human-readable name of the operation for logs and errors.
        policy: The retry policy to apply.
        idempotent: Whether repeating the request is safe.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The decoded response of the request.

    Raises:
        CalendarAPIError: The classified failure of the last attempt.
    """
    attempts = max(1, policy.max_attempts) if idempotent else 1

    for attempt in range(attempts):
        try:
            return request_factory().execute()
        except Exception as e:
            classified = classify_error(e, operation)
            if classified is None:
                raise

            is_last = attempt >= attempts - 1
            if not isinstance(classified, TransientCalendarError) or is_last:
                raise classified from e

            delay = policy.backoff(attempt)
            logger.warning(
                "%s (attempt %d/%d), retrying in %.1fs",
                classified, attempt + 1, attempts, delay,
            )
            sleep(delay)
