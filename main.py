"""Issue Calendar Linker - Entry Point.

Loads credentials once, then serves the Event-Issue Linker HTTP API.
Run setup_calendar.py first to create the token.

Usage:
    python main.py                 # Bind to LINKER_HOST:LINKER_PORT
    python main.py --port 8080     # Override the port
"""

import argparse
import logging
import sys

from config.settings import load_settings
from linker import server
from linker.linker import create_linker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("main")


def main() -> None:
    """Parse arguments and serve the linker."""
    parser = argparse.ArgumentParser(description="Link issues to Google Calendar events.")
    parser.add_argument("--host", help="Address to bind to (default: LINKER_HOST).")
    parser.add_argument("--port", type=int, help="Port to bind to (default: LINKER_PORT).")
    args = parser.parse_args()

    settings = load_settings()
    host = args.host or settings.linker_host
    port = args.port or settings.linker_port

    print("Starting Issue Calendar Linker...")
    print(f"  Calendar: {settings.calendar_id}")

    try:
        server.set_linker(create_linker(settings))
    except (FileNotFoundError, ValueError) as e:
        print(f"  ERROR: {e}")
        sys.exit(1)

    # Suppress Flask/Werkzeug request logs in production
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    print(f"  Listening on http://{host}:{port}")
    server.app.run(host=host, port=port, debug=False, use_reloader=False)


if __name__ == "__main__":
    main()
