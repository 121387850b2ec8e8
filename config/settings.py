"""Global Settings - Loads configuration from environment variables.

Centralizes all configuration so the linker and bootstrap never read env
vars directly. Settings are read once at startup and injected.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    """Application-wide settings loaded from environment variables."""

    # Google credentials
    google_client_secret_path: str = "client_secret.json"
    google_token_path: str = "token.json"
    google_service_account_path: str = ""

    # Calendar the linker operates on
    calendar_id: str = "primary"

    # Time zone recurring events are expanded in
    event_timezone: str = "Asia/Kolkata"

    # Back-link rendered into event descriptions, formatted with {issue_id}
    issue_url_template: str = "{issue_id}"

    # Remote call policy
    request_timeout: int = 30
    retry_max_attempts: int = 4
    retry_initial_backoff: float = 1.0
    retry_max_backoff: float = 30.0
    use_idempotency_keys: bool = True

    # HTTP surface
    linker_host: str = "127.0.0.1"
    linker_port: int = 5001


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Load settings from environment variables with sensible defaults.

    Environment variables:
        GOOGLE_CLIENT_SECRET_PATH: Path to the OAuth client_secret.json
        GOOGLE_CALENDAR_TOKEN_PATH: Path to the saved OAuth token.json
        GOOGLE_SERVICE_ACCOUNT_FILE: Optional service-account key, used instead of the token
        CALENDAR_ID: Calendar the linker reads and writes (default: "primary")
        EVENT_TIMEZONE: IANA timezone for recurring events
        ISSUE_URL_TEMPLATE: Issue back-link template, e.g. "https://github.com/o/r/issues/{issue_id}"
        REQUEST_TIMEOUT: Seconds before a Calendar API request is abandoned
        RETRY_MAX_ATTEMPTS, RETRY_INITIAL_BACKOFF, RETRY_MAX_BACKOFF: Retry policy
        USE_IDEMPOTENCY_KEYS: Send client-generated event ids so inserts can be retried
        LINKER_HOST, LINKER_PORT: Bind address of the HTTP surface

    Returns:
        A populated Settings instance.
    """
    return Settings(
        google_client_secret_path=os.getenv("GOOGLE_CLIENT_SECRET_PATH", "client_secret.json"),
        google_token_path=os.getenv("GOOGLE_CALENDAR_TOKEN_PATH", "token.json"),
        google_service_account_path=os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", ""),
        calendar_id=os.getenv("CALENDAR_ID", "primary").strip(),
        event_timezone=os.getenv("EVENT_TIMEZONE", "Asia/Kolkata"),
        issue_url_template=os.getenv("ISSUE_URL_TEMPLATE", "{issue_id}"),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
        retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "4")),
        retry_initial_backoff=float(os.getenv("RETRY_INITIAL_BACKOFF", "1.0")),
        retry_max_backoff=float(os.getenv("RETRY_MAX_BACKOFF", "30.0")),
        use_idempotency_keys=_env_bool("USE_IDEMPOTENCY_KEYS", True),
        linker_host=os.getenv("LINKER_HOST", "127.0.0.1"),
        linker_port=int(os.getenv("LINKER_PORT", "5001")),
    )
