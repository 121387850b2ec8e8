"""Google Calendar OAuth bootstrap.

Runs the authorization-code exchange once and stores a token with a
refresh credential, which the linker then loads on every start. The
interactive part (showing the URL, reading the pasted code) is supplied
by the caller; see setup_calendar.py.

Client secrets come from a "Web application" OAuth client whose first
authorized redirect URI is used, e.g. http://localhost:8080. After
consenting, the browser is redirected to that URI with ?code=...; the
code is pasted back at the prompt.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote

import requests
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from linker.errors import TokenExchangeError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar",
]

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def load_client_secrets(path: str) -> dict[str, Any] | None:
    """Read the client secrets document.

    Args:
        path: Path to client_secret.json.

    Returns:
        The parsed document, or None if it is missing, unreadable or not a
        web client configuration. The failure is logged.
    """
    try:
        content = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Error loading client secret file %s: %s", path, e)
        return None

    web = content.get("web") if isinstance(content, dict) else None
    if not isinstance(web, dict):
        logger.error("Client secret file %s has no 'web' client section", path)
        return None
    for key in ("client_id", "client_secret", "redirect_uris"):
        if not web.get(key):
            logger.error("Client secret file %s is missing web.%s", path, key)
            return None
    return content


def create_flow(client_config: dict[str, Any]) -> Flow:
    """Create an OAuth flow redirecting to the first authorized URI."""
    web = {"auth_uri": GOOGLE_AUTH_URI, "token_uri": GOOGLE_TOKEN_URI, **client_config["web"]}
    return Flow.from_client_config({"web": web}, scopes=SCOPES, redirect_uri=web["redirect_uris"][0])


def authorization_url(flow: Flow) -> str:
    """Build the consent URL, asking for offline access so a refresh token is issued."""
    url, _state = flow.authorization_url(access_type="offline", prompt="consent")
    return url


def exchange_code(flow: Flow, code: str) -> Credentials:
    """Redeem an authorization code for a token pair.

    Args:
        flow: The flow that produced the authorization URL.
        code: Code as pasted by the operator, possibly percent-encoded.

    Returns:
        Credentials holding the access and refresh tokens.

    Raises:
        TokenExchangeError: If the code is empty or the token endpoint
            rejects it or cannot be reached.
    """
    decoded = unquote(code.strip())
    if not decoded:
        raise TokenExchangeError("No authorization code entered.")

    try:
        flow.fetch_token(code=decoded)
    except (OAuth2Error, requests.RequestException, Warning) as e:
        raise TokenExchangeError(f"Error while trying to retrieve access token: {e}") from e

    creds = flow.credentials
    if not creds.refresh_token:
        raise TokenExchangeError(
            "No refresh token was issued. Revoke the app's access and authorize again."
        )
    return creds


def store_token(creds: Credentials, token_path: str) -> Path:
    """Write the token JSON in the format the linker loads."""
    token = json.loads(creds.to_json())
    token["token_type"] = "Bearer"
    path = Path(token_path)
    path.write_text(json.dumps(token, indent=2), encoding="utf-8")
    logger.info("Token stored to %s", path)
    return path


def authorize(
    credentials: dict[str, Any],
    token_path: str,
    prompt: Callable[[str], str],
    show: Callable[[str], None] = print,
) -> Path | None:
    """Run the one-time authorization and persist the token.

    Args:
        credentials: Parsed client secrets from load_client_secrets().
        token_path: Where to write the token.
        prompt: Reads one line from the operator, e.g. input.
        show: Displays a line to the operator.

    Returns:
        The token path, or None if the exchange failed. Failures are
        logged; nothing is retried.
    """
    flow = create_flow(credentials)
    show(f"Authorize this app by visiting this url: {authorization_url(flow)}")
    code = prompt("Enter the code from that page here: ")

    try:
        creds = exchange_code(flow, code)
    except TokenExchangeError as e:
        logger.error("%s", e)
        return None

    try:
        return store_token(creds, token_path)
    except OSError as e:
        logger.error("Could not write token to %s: %s", token_path, e)
        return None
