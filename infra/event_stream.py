"""Callback subscription front end over the recent-change feed.

``EventStream`` connects an :class:`SSETransport` to the shared
classification pipeline and fans typed events out to registered
listeners.

Thread ownership:
    - ``on_edit()`` / ``on_log()`` / ``on_wiki_*()``: any thread.
    - ``_on_message()``: transport reader thread only.
    - ``close()``: any thread, including from inside a listener.
    - ``stats()``: any thread.

Delivery:
    Each raw message is decoded and classified once, then delivered to
    every matching listener synchronously, in registration order, on
    the transport reader thread. Empty, malformed, unrecognised and
    schema-incompatible lines never reach a listener.

State machine:
    ``IDLE -> CONNECTED -> CLOSED``. There is no way back from CLOSED;
    reconnection after a drop is handled inside the transport and does
    not change the stream state.

Example:
    >>> stream = EventStream()
    >>> stream.on_wiki_edit(
    ...     "en.wikipedia.org",
    ...     lambda edit: print(f"{edit.user} edited {edit.title}"),
    ... )
    >>> # ... events arrive on the reader thread ...
    >>> stream.close()
"""

import logging
import threading
from enum import Enum
from types import TracebackType
from typing import Callable

from core.classifier import Classification, LineClassifier
from core.events import EditEvent, LogEvent
from core.registry import ListenerRegistry, filter_by_wiki
from infra.sse_transport import SSETransport, StreamConfig

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

EditListener = Callable[[EditEvent], None]
"""Listener signature for edits: ``(edit) -> None``."""

LogListener = Callable[[LogEvent], None]
"""Listener signature for log entries: ``(log) -> None``."""


# ---------------------------------------------------------------------------
# Errors and enums
# ---------------------------------------------------------------------------


class StreamClosedError(RuntimeError):
    """Raised when a closed :class:`EventStream` is used."""


class StreamState(str, Enum):
    """Lifecycle of an :class:`EventStream`.

    States:
        IDLE: Created, no connection confirmed yet.
        CONNECTED: The transport reported an open connection.
        CLOSED: ``close()`` called. Terminal.
    """

    IDLE = "IDLE"
    CONNECTED = "CONNECTED"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Event stream
# ---------------------------------------------------------------------------


class EventStream:
    """Typed, filterable push interface to Wikimedia recent changes.

    Args:
        config: Connection settings, used only when ``transport`` is
            not given. Defaults to ``StreamConfig()``.
        transport: Pre-built transport. When given, the stream wires
            its hooks but leaves ``connect()`` to the caller. When
            omitted, the stream builds one and connects immediately.

    Example:
        >>> with EventStream() as stream:
        ...     stream.on_edit(lambda e: print(e.server_name, e.title))
        ...     stream.on_log(lambda l: print(l.log_type, l.log_action))
        ...     time.sleep(10)
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        transport: SSETransport | None = None,
    ) -> None:
        owns_transport: bool = transport is None
        self._transport: SSETransport = transport or SSETransport(config=config)
        self._classifier: LineClassifier = LineClassifier()

        self._edit_listeners: ListenerRegistry[EditEvent] = ListenerRegistry("edit")
        self._log_listeners: ListenerRegistry[LogEvent] = ListenerRegistry("log")

        self._state: StreamState = StreamState.IDLE
        self._state_lock: threading.Lock = threading.Lock()
        # Held for a whole delivery; never taken by registration.
        # Re-entrant: a listener may call close() on the reader thread.
        self._dispatch_lock: threading.RLock = threading.RLock()

        self._transport.on_open(self._on_open)
        self._transport.on_message(self._on_message)

        if owns_transport:
            self._transport.connect()

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "EventStream":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def source(self) -> SSETransport:
        """The underlying transport, for lifecycle hooks and stats."""
        return self._transport

    @property
    def state(self) -> StreamState:
        with self._state_lock:
            return self._state

    def on_edit(self, listener: EditListener) -> None:
        """Set a listener for all edits.

        Raises:
            StreamClosedError: If the stream has been closed.
        """
        self._ensure_open()
        self._edit_listeners.add(listener)

    def on_wiki_edit(self, wiki: str, listener: EditListener) -> None:
        """Set a listener for edits on one wiki, by server name.

        Args:
            wiki: Server name to match, e.g. ``"www.wikidata.org"``.
            listener: Called with each matching :class:`EditEvent`.

        Raises:
            StreamClosedError: If the stream has been closed.
        """
        self.on_edit(filter_by_wiki(wiki, listener))

    def on_log(self, listener: LogListener) -> None:
        """Set a listener for all log entries.

        Raises:
            StreamClosedError: If the stream has been closed.
        """
        self._ensure_open()
        self._log_listeners.add(listener)

    def on_wiki_log(self, wiki: str, listener: LogListener) -> None:
        """Set a listener for log entries on one wiki, by server name.

        Raises:
            StreamClosedError: If the stream has been closed.
        """
        self.on_log(filter_by_wiki(wiki, listener))

    def on_open(self, listener: Callable[[], None]) -> None:
        """Set a listener called each time the transport (re)connects.

        Raises:
            StreamClosedError: If the stream has been closed.
        """
        self._ensure_open()
        self._transport.on_open(listener)

    def close(self) -> None:
        """Close the stream and release the connection.

        Once this returns, no listener is invoked again, even if the
        transport still has messages in flight. Idempotent.
        """
        with self._dispatch_lock, self._state_lock:
            if self._state == StreamState.CLOSED:
                return
            self._state = StreamState.CLOSED

        self._transport.close()
        logger.info("Event stream closed (%s)", self._classifier.stats())

    def stats(self) -> dict[str, object]:
        """Return stream, classifier, listener, and transport statistics."""
        return {
            "state": self.state.value,
            "classifier": self._classifier.stats(),
            "edit_listeners": self._edit_listeners.stats(),
            "log_listeners": self._log_listeners.stats(),
            "transport": self._transport.stats(),
        }

    # ------------------------------------------------------------------
    # Transport hooks (reader thread)
    # ------------------------------------------------------------------

    def _on_open(self) -> None:
        with self._state_lock:
            if self._state == StreamState.IDLE:
                self._state = StreamState.CONNECTED
                logger.info("Event stream connected")

    def _on_message(self, data: str) -> None:
        """Classify one raw payload and dispatch the resulting event.

        Holds the dispatch lock for the whole delivery so that
        ``close()`` from another thread waits for an in-flight event
        to finish and no event starts after it.
        """
        with self._dispatch_lock:
            if self.state == StreamState.CLOSED:
                return

            result: Classification = self._classifier.classify_line(data)
            event = result.event
            if isinstance(event, EditEvent):
                self._edit_listeners.dispatch(event)
            elif isinstance(event, LogEvent):
                self._log_listeners.dispatch(event)

    def _ensure_open(self) -> None:
        if self.state == StreamState.CLOSED:
            raise StreamClosedError("Cannot register a listener on a closed stream")
