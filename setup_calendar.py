"""Google Calendar OAuth Setup.

Run this once to authenticate with Google Calendar and save a token.
Prints the consent URL, waits for the authorization code to be pasted,
then saves token.json for future use by the Event-Issue Linker.

Usage:
    python setup_calendar.py
"""

import logging
import os
import sys

from bootstrap.oauth import authorize, load_client_secrets
from config.settings import load_settings

# Google may report the granted scopes in a different order or merged
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def main() -> None:
    """Run the OAuth flow and save the token."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    settings = load_settings()

    print("Starting Google Calendar authentication...")
    print(f"Using credentials from: {settings.google_client_secret_path}")
    print()

    credentials = load_client_secrets(settings.google_client_secret_path)
    if credentials is None:
        sys.exit(1)

    token_path = authorize(credentials, settings.google_token_path, prompt=input)
    if token_path is None:
        sys.exit(1)

    print()
    print(f"Token saved to: {token_path}")
    print("You can now run: python main.py")


if __name__ == "__main__":
    main()
