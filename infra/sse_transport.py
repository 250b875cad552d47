"""Threaded server-sent-events transport for Wikimedia EventStreams.

This module owns everything below the classification pipeline: the HTTP
connection, SSE framing, and reconnection. It hands each raw ``data``
payload to registered message hooks and never looks inside it.

Architecture note:
    Uses synchronous ``requests`` with ``stream=True`` and
    ``sseclient-py`` for SSE framing, driven by one daemon reader
    thread. Message hooks run inline in that thread, in arrival order.

Connection semantics:
    No ``Last-Event-ID`` is sent on reconnect, so events emitted while
    disconnected are lost and none are replayed. Freshness over
    completeness: there is no backfill.

Callback contract:
    Hooks registered via ``on_message()`` should be quick. A slow hook
    delays every later message on this connection.
"""

import logging
import random
import threading
import time
from enum import Enum
from typing import Callable

import requests
import sseclient
from pydantic import BaseModel, Field, model_validator

from core.registry import ListenerRegistry

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants and type aliases
# ---------------------------------------------------------------------------

RECENTCHANGE_URL: str = "https://stream.wikimedia.org/v2/stream/recentchange"
"""Public recent-change stream of all Wikimedia wikis."""

DEFAULT_USER_AGENT: str = (
    "wikimedia-eventstreams-adapter/0.1.0 "
    "(https://wikitech.wikimedia.org/wiki/Event_Platform/EventStreams)"
)
"""Wikimedia's robot policy asks every client to identify itself."""

MessageCallback = Callable[[str], None]
"""Callback signature: ``(data: str) -> None``."""

OpenCallback = Callable[[], None]
"""Callback signature: ``() -> None``."""

ErrorCallback = Callable[[Exception], None]
"""Callback signature: ``(error: Exception) -> None``."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TransportState(str, Enum):
    """Connection state machine for :class:`SSETransport`.

    States:
        INIT: Created, ``connect()`` not yet called.
        CONNECTING: Reader thread started, first response pending.
        OPEN: Response received, events flowing.
        RECONNECTING: Connection lost, waiting out the backoff delay.
        CLOSED: ``close()`` called or reconnect disabled. Terminal.
    """

    INIT = "INIT"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class StreamConfig(BaseModel):
    """Connection settings shared by the threaded and async front ends.

    Attributes:
        url: SSE endpoint. Defaults to the recent-change stream.
        user_agent: ``User-Agent`` header sent with every request.
        connect_timeout: Seconds to wait for the TCP/TLS handshake.
        read_timeout: Seconds of silence before the connection is
            considered dead. The feed sends a steady flow of events, so
            a long silence means a stalled socket.
        reconnect: Reconnect automatically after a drop (threaded
            transport only).
        reconnect_min_delay: First reconnect backoff delay in seconds.
        reconnect_max_delay: Upper bound of the reconnect backoff.
    """

    url: str = Field(default=RECENTCHANGE_URL, min_length=1)
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)
    connect_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="TCP/TLS connect timeout in seconds",
    )
    read_timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Maximum silence on the socket in seconds",
    )
    reconnect: bool = Field(
        default=True,
        description="Reconnect after the connection drops",
    )
    reconnect_min_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum reconnect backoff delay in seconds",
    )
    reconnect_max_delay: float = Field(
        default=60.0,
        ge=0.0,
        description="Maximum reconnect backoff delay in seconds",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "StreamConfig":
        if self.reconnect_min_delay > self.reconnect_max_delay:
            raise ValueError(
                "reconnect_min_delay must not exceed reconnect_max_delay",
            )
        return self

    def headers(self) -> dict[str, str]:
        """HTTP headers for the stream request."""
        return {
            "Accept": "text/event-stream",
            "User-Agent": self.user_agent,
        }


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class SSETransport:
    """Background SSE reader with lifecycle hooks and auto-reconnect.

    Features:
        - Streaming GET via a shared ``requests.Session``
        - SSE framing via ``sseclient-py``; only ``message`` events
          with a payload are forwarded
        - Open / message / error hooks, each isolated per callback
        - Reconnect with exponential backoff + jitter
        - ``close()`` interrupts a blocked read by closing the response

    Args:
        config: Connection settings. Defaults to ``StreamConfig()``.

    Example::

        transport = SSETransport()
        transport.on_message(lambda data: print(len(data)))
        transport.connect()
        # ... messages arrive on the reader thread ...
        transport.close()
    """

    def __init__(self, config: StreamConfig | None = None) -> None:
        self._config: StreamConfig = config or StreamConfig()
        self._session: requests.Session = requests.Session()
        self._session.headers.update(self._config.headers())
        self._response: requests.Response | None = None

        self._message_hooks: ListenerRegistry[str] = ListenerRegistry("message")
        self._open_hooks: ListenerRegistry[None] = ListenerRegistry("open")
        self._error_hooks: ListenerRegistry[Exception] = ListenerRegistry("error")

        self._state: TransportState = TransportState.INIT
        self._state_lock: threading.Lock = threading.Lock()
        self._shutdown_event: threading.Event = threading.Event()
        self._thread: threading.Thread | None = None

        self._messages_received: int = 0
        self._reconnect_count: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

        self._last_connect_ts: float = 0.0
        self._last_disconnect_ts: float = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        with self._state_lock:
            return self._state

    def on_message(self, callback: MessageCallback) -> None:
        """Register a hook called with each raw ``data`` payload."""
        self._message_hooks.add(callback)

    def on_open(self, callback: OpenCallback) -> None:
        """Register a hook called each time a connection is established."""
        self._open_hooks.add(lambda _: callback())

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a hook called when the connection fails or drops."""
        self._error_hooks.add(callback)

    def connect(self) -> None:
        """Start the background reader thread.

        Returns immediately; the connection is established on the
        reader thread and announced through ``on_open`` hooks.

        Raises:
            RuntimeError: If the transport is not in INIT state.
        """
        with self._state_lock:
            if self._state != TransportState.INIT:
                raise RuntimeError(
                    f"Cannot connect: transport is in {self._state} state"
                )
            self._state = TransportState.CONNECTING

        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="sse-reader",
        )
        self._thread.start()
        logger.info("SSE transport started for %s", self._config.url)

    def close(self, timeout: float | None = 5.0) -> None:
        """Stop reading and release the connection.

        Idempotent and safe to call from any thread, including from a
        hook running on the reader thread.

        Args:
            timeout: Seconds to wait for the reader thread to exit.
        """
        with self._state_lock:
            if self._state == TransportState.CLOSED:
                return
            self._state = TransportState.CLOSED

        logger.info("Closing SSE transport")
        self._shutdown_event.set()
        self._close_response()
        try:
            self._session.close()
        except Exception:
            logger.debug("Exception during session close", exc_info=True)

        thread: threading.Thread | None = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

        with self._counter_lock:
            msgs: int = self._messages_received
            reconns: int = self._reconnect_count
        logger.info(
            "SSE transport closed (messages=%d, reconnects=%d)",
            msgs,
            reconns,
        )

    def stats(self) -> dict[str, str | int | float]:
        """Return transport statistics.

        Returns:
            Dictionary with connection state, counters, timestamps, and
            hook error counts.
        """
        with self._state_lock:
            current_state: str = self._state.value
        with self._counter_lock:
            msgs: int = self._messages_received
            reconns: int = self._reconnect_count
        return {
            "state": current_state,
            "messages_received": msgs,
            "reconnect_count": reconns,
            "callback_errors": self._message_hooks.stats()["listener_errors"],
            "last_connect_ts": self._last_connect_ts,
            "last_disconnect_ts": self._last_disconnect_ts,
        }

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        """Read until closed, reconnecting with backoff after drops.

        Backoff doubles on each consecutive failure, up to
        ``reconnect_max_delay``, and resets after a connection that
        delivered at least one message.
        """
        delay: float = self._config.reconnect_min_delay

        while not self._shutdown_event.is_set():
            error: Exception
            try:
                received: int = self._run_once()
                error = ConnectionError("SSE stream ended")
            except Exception as exc:
                received = 0
                error = exc

            self._last_disconnect_ts = time.time()
            if self._shutdown_event.is_set():
                break

            logger.warning("SSE connection lost: %s", error)
            self._error_hooks.dispatch(error)

            if not self._config.reconnect:
                with self._state_lock:
                    self._state = TransportState.CLOSED
                logger.info("Reconnect disabled, transport closed")
                break

            if received > 0:
                delay = self._config.reconnect_min_delay
            if not self._set_state(TransportState.RECONNECTING):
                break

            jittered_delay: float = delay * random.uniform(0.8, 1.2)
            logger.info("Reconnecting in %.1fs", jittered_delay)
            if self._shutdown_event.wait(timeout=jittered_delay):
                break
            delay = min(delay * 2, self._config.reconnect_max_delay)
            with self._counter_lock:
                self._reconnect_count += 1

    def _run_once(self) -> int:
        """Open one connection and pump its messages until it ends.

        Returns:
            Number of messages forwarded on this connection.

        Raises:
            requests.RequestException: On connect, HTTP status, or read
                failure.
        """
        response: requests.Response = self._session.get(
            self._config.url,
            stream=True,
            timeout=(self._config.connect_timeout, self._config.read_timeout),
        )
        self._response = response
        received: int = 0
        try:
            response.raise_for_status()
            if not self._set_state(TransportState.OPEN):
                return 0
            self._last_connect_ts = time.time()
            logger.info("Connected to %s", self._config.url)
            self._open_hooks.dispatch(None)

            client: sseclient.SSEClient = sseclient.SSEClient(response)
            for message in client.events():
                if self._shutdown_event.is_set():
                    break
                if message.event != "message" or not message.data:
                    continue
                with self._counter_lock:
                    self._messages_received += 1
                received += 1
                self._message_hooks.dispatch(message.data)
        finally:
            self._close_response()
        return received

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: TransportState) -> bool:
        """Move to ``state`` unless closed. Returns ``False`` if closed."""
        with self._state_lock:
            if self._state == TransportState.CLOSED:
                return False
            self._state = state
            return True

    def _close_response(self) -> None:
        response: requests.Response | None = self._response
        self._response = None
        if response is None:
            return
        try:
            response.close()
        except Exception:
            logger.debug("Exception during response close", exc_info=True)
