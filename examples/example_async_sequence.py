"""Example: Pull recent changes as an async sequence.

This script demonstrates the pull pipeline:

    aiohttp response → iter_sse_data → LineClassifier → EventSequence

It reads events until ``--limit`` is reached, then leaves the
``async with`` block, which releases the HTTP connection.

Prerequisites:
    1. Optionally set ``EVENTSTREAMS_URL`` and ``EVENTSTREAMS_USER_AGENT``
       in ``.env``.
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_async_sequence
    python -m examples.example_async_sequence --limit 50
"""

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

from core.classifier import ClassifierStats
from core.events import EditEvent
from infra.async_stream import open_event_sequence
from infra.sse_transport import DEFAULT_USER_AGENT, RECENTCHANGE_URL, StreamConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


async def consume(config: StreamConfig, limit: int) -> ClassifierStats:
    """Print ``limit`` events and return the classifier counters."""
    seen: int = 0
    async with open_event_sequence(config=config) as events:
        async for event in events:
            seen += 1
            if isinstance(event, EditEvent):
                print(f"#{seen} edit {event.server_name} {event.title}: {event.diff_url()}")
            else:
                print(f"#{seen} log  {event.log_type}/{event.log_action} via {event.api_url()}")
            if seen >= limit:
                break
    return events.stats()


def main() -> None:
    """Run the async sequence example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Pull a fixed number of recent changes",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of events to read (default: 20)",
    )
    args: argparse.Namespace = parser.parse_args()

    config: StreamConfig = StreamConfig(
        url=os.environ.get("EVENTSTREAMS_URL", RECENTCHANGE_URL),
        user_agent=os.environ.get("EVENTSTREAMS_USER_AGENT", DEFAULT_USER_AGENT),
    )

    try:
        stats: ClassifierStats = asyncio.run(consume(config, args.limit))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return
    logger.info("Classifier: %s", stats)


if __name__ == "__main__":
    main()
