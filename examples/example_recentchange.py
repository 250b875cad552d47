"""Example: Print live edits and log entries from Wikimedia wikis.

This script demonstrates the callback pipeline:

    SSETransport → EventStream → on_edit / on_log listeners

Edits (optionally from one wiki only) and log entries are printed as
they arrive. The stream reconnects on its own after a dropped
connection.

Prerequisites:
    1. Optionally copy ``.env.sample`` to ``.env`` and set:
       - ``EVENTSTREAMS_URL`` (defaults to the public recent-change stream)
       - ``EVENTSTREAMS_USER_AGENT`` (a contact address is polite)
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_recentchange
    python -m examples.example_recentchange --wiki www.wikidata.org
    python -m examples.example_recentchange --wiki de.wikipedia.org --duration 30

Press Ctrl+C to stop.
"""

import argparse
import logging
import os
import time

from dotenv import load_dotenv

from core.events import EditEvent, LogEvent
from infra.event_stream import EventStream
from infra.sse_transport import (
    DEFAULT_USER_AGENT,
    RECENTCHANGE_URL,
    SSETransport,
    StreamConfig,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def main() -> None:
    """Run the recent-change listener example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Print live edits and log entries from Wikimedia wikis",
    )
    parser.add_argument(
        "--wiki",
        type=str,
        default=None,
        help="Only print events from this server name (default: all wikis)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to run before stopping, 0 for no limit (default: 0)",
    )
    args: argparse.Namespace = parser.parse_args()

    config: StreamConfig = StreamConfig(
        url=os.environ.get("EVENTSTREAMS_URL", RECENTCHANGE_URL),
        user_agent=os.environ.get("EVENTSTREAMS_USER_AGENT", DEFAULT_USER_AGENT),
    )

    edit_count: int = 0
    log_count: int = 0

    def print_edit(edit: EditEvent) -> None:
        nonlocal edit_count
        edit_count += 1
        print(f"{edit.server_name}: {edit.user} edited {edit.title}")

    def print_log(log: LogEvent) -> None:
        nonlocal log_count
        log_count += 1
        print(
            f"{log.server_name}: {log.user} did "
            f"{log.log_type}/{log.log_action} on {log.title}"
        )

    # Wire hooks before connecting so the first open is not missed
    transport: SSETransport = SSETransport(config=config)
    stream: EventStream = EventStream(transport=transport)
    stream.on_open(lambda: print("Connected."))
    if args.wiki:
        stream.on_wiki_edit(args.wiki, print_edit)
        stream.on_wiki_log(args.wiki, print_log)
    else:
        stream.on_edit(print_edit)
        stream.on_log(print_log)

    logger.info("Connecting to %s ...", config.url)
    transport.connect()

    started: float = time.monotonic()
    try:
        while args.duration <= 0 or time.monotonic() - started < args.duration:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        stream.close()

        stats: dict[str, object] = stream.stats()
        logger.info("=" * 60)
        logger.info("Final Statistics")
        logger.info("-" * 60)
        logger.info("Edits: %d", edit_count)
        logger.info("Log entries: %d", log_count)
        logger.info("Classifier: %s", stats["classifier"])
        logger.info("Transport: %s", stats["transport"])
        logger.info("=" * 60)


if __name__ == "__main__":
    main()
