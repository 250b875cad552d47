"""Asynchronous pull interface over the recent-change feed.

``EventSequence`` is a lazy, single-pass async iterator of typed events.
It owns no thread: each ``__anext__`` suspends the calling task until
the next raw message arrives on the ``aiohttp`` response, classifies
it with the same pipeline as the callback front end, and either returns
the event or keeps reading.

Resource discipline:
    The HTTP connection is opened on ``__aenter__`` or on the first
    ``__anext__``, and released by ``aclose()``. Use ``async with`` so
    that breaking out of the loop early does not leak the connection::

        async with open_event_sequence() as events:
            async for event in events:
                if isinstance(event, EditEvent):
                    print(event.diff_url())

Termination:
    The feed is unbounded, so a healthy sequence never ends. If the
    server closes the stream the sequence releases its resources and
    stops; transport errors propagate to the consumer. No retry is
    attempted here. Open a new sequence to reconnect.
"""

import logging
from types import TracebackType
from typing import AsyncGenerator, AsyncIterable

import aiohttp

from core.classifier import Classification, ClassifierStats, LineClassifier
from core.events import DomainEvent
from infra.sse_transport import StreamConfig

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_READ_BUFSIZE: int = 2**20
"""Response buffer size. Log events with large ``log_params`` can exceed
aiohttp's default line limit."""


# ---------------------------------------------------------------------------
# SSE framing
# ---------------------------------------------------------------------------


async def iter_sse_data(lines: AsyncIterable[bytes]) -> AsyncGenerator[bytes, None]:
    """Yield the ``data`` payload of each SSE ``message`` event.

    Follows the SSE line protocol: ``data`` fields of one event are
    joined with newlines and the event is dispatched on a blank line.
    Comment lines (``:``) and events with a type other than ``message``
    are skipped.

    Framing works on raw bytes. Payloads are passed on undecoded, so a
    frame with invalid UTF-8 reaches the classifier intact and is
    dropped there as malformed instead of being silently repaired.

    Args:
        lines: Raw response lines, e.g. ``response.content``.

    Yields:
        One payload per dispatched ``message`` event.
    """
    data: list[bytes] = []
    event_type: bytes = b"message"

    async for raw in lines:
        line: bytes = raw.rstrip(b"\r\n")

        if not line:
            if data and event_type == b"message":
                yield b"\n".join(data)
            data = []
            event_type = b"message"
            continue

        if line.startswith(b":"):
            continue

        field, _, value = line.partition(b":")
        if value.startswith(b" "):
            value = value[1:]

        if field == b"data":
            data.append(value)
        elif field == b"event":
            event_type = value or b"message"

    if data and event_type == b"message":
        yield b"\n".join(data)


# ---------------------------------------------------------------------------
# Event sequence
# ---------------------------------------------------------------------------


class EventSequence:
    """Lazy async iterator of classified feed events.

    Args:
        config: Connection settings. Defaults to ``StreamConfig()``.
            ``reconnect`` settings do not apply.
        session: Existing ``aiohttp.ClientSession`` to borrow. When
            omitted the sequence creates one and closes it on
            ``aclose()``; a borrowed session is left open.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config: StreamConfig = config or StreamConfig()
        self._session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None
        self._response: aiohttp.ClientResponse | None = None
        self._payloads: AsyncGenerator[bytes, None] | None = None
        self._classifier: LineClassifier = LineClassifier()
        self._closed: bool = False

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "EventSequence":
        await self._open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __aiter__(self) -> "EventSequence":
        return self

    async def __anext__(self) -> DomainEvent:
        if self._closed:
            raise StopAsyncIteration

        try:
            if self._payloads is None:
                await self._open()
            assert self._payloads is not None

            async for data in self._payloads:
                result: Classification = self._classifier.classify_line(data)
                if result.event is not None:
                    return result.event
        except BaseException:
            await self.aclose()
            raise

        logger.warning("Event stream ended by server")
        await self.aclose()
        raise StopAsyncIteration

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> ClassifierStats:
        """Classifier counters for the lines read so far."""
        return self._classifier.stats()

    async def aclose(self) -> None:
        """Release the response and, if owned, the session. Idempotent."""
        if self._closed:
            return
        self._closed = True

        payloads: AsyncGenerator[bytes, None] | None = self._payloads
        self._payloads = None
        if payloads is not None:
            await payloads.aclose()

        if self._response is not None:
            self._response.close()
            self._response = None

        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
        logger.info("Event sequence closed (%s)", self._classifier.stats())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        """Open the single HTTP connection backing this sequence."""
        if self._closed:
            raise RuntimeError("Cannot open a closed event sequence")
        if self._payloads is not None:
            return

        if self._session is None:
            self._session = aiohttp.ClientSession(read_bufsize=_READ_BUFSIZE)

        timeout: aiohttp.ClientTimeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self._config.connect_timeout,
            sock_read=self._config.read_timeout,
        )
        try:
            response: aiohttp.ClientResponse = await self._session.get(
                self._config.url,
                headers=self._config.headers(),
                timeout=timeout,
            )
            self._response = response
            response.raise_for_status()
        except BaseException:
            await self.aclose()
            raise

        self._payloads = iter_sse_data(response.content)
        logger.info("Connected to %s", self._config.url)


def open_event_sequence(
    config: StreamConfig | None = None,
    session: aiohttp.ClientSession | None = None,
) -> EventSequence:
    """Create a new :class:`EventSequence` backed by its own connection.

    Each call yields an independent, single-pass sequence. The
    connection is opened lazily, on ``async with`` or first iteration.
    """
    return EventSequence(config=config, session=session)
