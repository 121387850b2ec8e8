"""Google Calendar API wrapper.

Handles credential loading and API client initialization. This module
isolates the Google auth specifics so the linker logic stays clean.
"""

import logging
from pathlib import Path
from typing import Any

import google_auth_httplib2
import httplib2
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar",
]


def load_credentials(token_path: str, service_account_path: str = "") -> Any:
    """Load or refresh Google credentials.

    A service-account key takes precedence when configured; otherwise the
    token written by setup_calendar.py is used and refreshed if expired.

    Args:
        token_path: Path to the saved token JSON file.
        service_account_path: Optional path to a service-account key file.

    Returns:
        Valid credentials for the Calendar API.

    Raises:
        FileNotFoundError: If the token file doesn't exist (user needs to run setup_calendar.py).
        ValueError: If the token is expired and can't be refreshed.
    """
    if service_account_path:
        logger.info("Using service account key %s", service_account_path)
        return service_account.Credentials.from_service_account_file(
            service_account_path, scopes=[SCOPES[1]]
        )

    token_file = Path(token_path)
    if not token_file.exists():
        raise FileNotFoundError(
            f"Token file not found at {token_path}. "
            "Run 'python setup_calendar.py' to authenticate."
        )

    creds = Credentials.from_authorized_user_file(str(token_file), SCOPES)

    if creds and creds.expired and creds.refresh_token:
        logger.info("Refreshing expired token...")
        creds.refresh(Request())
        token_file.write_text(creds.to_json())
        logger.info("Token refreshed and saved.")
    elif not creds or not creds.valid:
        raise ValueError(
            "Token is invalid and cannot be refreshed. "
            "Run 'python setup_calendar.py' to re-authenticate."
        )

    return creds


def build_service(creds: Any, timeout: int = 30) -> Any:
    """Build a Calendar v3 service whose requests time out.

    Args:
        creds: Credentials from load_credentials().
        timeout: Socket timeout in seconds applied to every request.

    Returns:
        A googleapiclient Resource for the Calendar API.
    """
    http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    return build("calendar", "v3", http=http, cache_discovery=False)
