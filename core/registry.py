"""Append-only listener registry for the callback front end.

The registry is the only mutable state shared between the thread that
registers listeners and the transport thread that dispatches events.

Copy-on-write:
    Listeners are held in an immutable tuple. ``add()`` builds a new
    tuple under a lock and swaps the reference; ``dispatch()`` reads
    the reference once and iterates that snapshot without locking. A
    listener added mid-dispatch is therefore first called on the next
    event, and neither side can observe a half-updated list.

No removal:
    Listeners live as long as the registry. There is no unsubscribe
    operation.

Error isolation:
    An exception from one listener is counted and logged; the remaining
    listeners still receive the event. Logging is rate-limited in the
    same way as the classifier.

Example:
    >>> registry: ListenerRegistry[EditEvent] = ListenerRegistry("edit")
    >>> registry.add(print)
    >>> registry.add(filter_by_wiki("en.wikipedia.org", handle_enwiki))
    >>> registry.dispatch(edit)
    2
"""

import logging
import threading
from typing import Callable, Generic, Protocol, TypeVar

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class _HasServerName(Protocol):
    server_name: str


T = TypeVar("T")
"""Event type delivered by a registry."""

E = TypeVar("E", bound=_HasServerName)

Listener = Callable[[T], None]
"""Listener signature: ``(event) -> None``. Runs in the transport thread."""

_LOG_FIRST_N: int = 10
"""Log full stack trace for the first N listener errors."""

_LOG_EVERY_N: int = 1000
"""After the first N errors, log every Nth occurrence."""


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def filter_by_wiki(server_name: str, listener: Callable[[E], None]) -> Callable[[E], None]:
    """Wrap ``listener`` so it only sees events from one wiki.

    Args:
        server_name: Wiki domain to match exactly, e.g.
            ``"www.wikidata.org"``.
        listener: Listener to forward matching events to.

    Returns:
        A listener that calls ``listener(event)`` only when
        ``event.server_name == server_name``.
    """

    def _guard(event: E) -> None:
        if event.server_name == server_name:
            listener(event)

    return _guard


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ListenerRegistry(Generic[T]):
    """Thread-safe, append-only list of listeners for one event kind.

    Args:
        name: Label used in log messages (e.g. ``"edit"``).
    """

    def __init__(self, name: str) -> None:
        self._name: str = name
        self._listeners: tuple[Listener[T], ...] = ()
        self._add_lock: threading.Lock = threading.Lock()

        self._dispatched: int = 0
        self._listener_errors: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._listeners)

    @property
    def name(self) -> str:
        return self._name

    def add(self, listener: Listener[T]) -> None:
        """Append ``listener``. It is called after all earlier listeners."""
        with self._add_lock:
            self._listeners = self._listeners + (listener,)
        logger.debug(
            "Registered %s listener (total=%d)",
            self._name,
            len(self._listeners),
        )

    def dispatch(self, event: T) -> int:
        """Invoke every registered listener with ``event``, in order.

        Args:
            event: Event to deliver.

        Returns:
            Number of listeners that returned without raising.
        """
        listeners: tuple[Listener[T], ...] = self._listeners
        delivered: int = 0
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                with self._counter_lock:
                    self._listener_errors += 1
                    count: int = self._listener_errors
                self._log_listener_error(count=count)
                continue
            delivered += 1

        with self._counter_lock:
            self._dispatched += 1
        return delivered

    def stats(self) -> dict[str, int]:
        """Return listener count and dispatch counters."""
        with self._counter_lock:
            dispatched: int = self._dispatched
            errors: int = self._listener_errors
        return {
            "listeners": len(self._listeners),
            "events_dispatched": dispatched,
            "listener_errors": errors,
        }

    def _log_listener_error(self, count: int) -> None:
        # Called from inside the ``except`` block of ``dispatch``.
        if count <= _LOG_FIRST_N:
            logger.exception(
                "Error in %s listener (%d/%d)",
                self._name,
                count,
                _LOG_FIRST_N,
            )
        elif count % _LOG_EVERY_N == 0:
            logger.error(
                "%s listener errors ongoing: %d total",
                self._name,
                count,
            )
