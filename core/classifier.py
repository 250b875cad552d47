"""Line decoding and event classification shared by both front ends.

Turns one raw feed line into either a typed :data:`DomainEvent` or a
reason for dropping it. Nothing in this module raises past its public
functions: empty lines, truncated JSON, unknown change types and
schema-incompatible payloads all come back as a drop.

Drop taxonomy:
    - ``EMPTY``: blank line or keep-alive.
    - ``MALFORMED``: not valid JSON. The feed occasionally emits
      truncated lines under load. Invalid UTF-8 and pathologically
      nested arrays land here too.
    - ``UNRECOGNIZED``: valid JSON but not an object, or ``type`` is
      missing or not one of ``edit`` / ``log``.
    - ``INCOMPATIBLE``: known ``type`` but a required field is missing
      or has the wrong scalar type.

Logging safety:
    Incompatible payloads are worth a look (usually a feed schema
    change) and are logged at WARNING with rate limiting. The first 10
    are logged with the validation detail, then every 1000th. The
    other drop reasons are routine and only logged at DEBUG.

Example:
    >>> classify_line("")
    Classification(event=None, reason=<DropReason.EMPTY: 'empty'>)
    >>> classify_line('{"type": "categorize"}').reason
    <DropReason.UNRECOGNIZED: 'unrecognized'>
"""

import json
import logging
import threading
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.events import DomainEvent

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DOMAIN_EVENT_ADAPTER: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)
"""Validator for the closed ``EditEvent | LogEvent`` union."""

_UNRECOGNIZED_ERRORS: frozenset[str] = frozenset(
    {"union_tag_not_found", "union_tag_invalid"},
)
"""Pydantic error types raised when the discriminant itself is unusable."""

_LOG_FIRST_N: int = 10
"""Log validation detail for the first N incompatible payloads."""

_LOG_EVERY_N: int = 1000
"""After the first N, log every Nth incompatible payload."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class DropReason(str, Enum):
    """Why a feed line did not produce an event."""

    EMPTY = "empty"
    MALFORMED = "malformed"
    UNRECOGNIZED = "unrecognized"
    INCOMPATIBLE = "incompatible"


class Classification(NamedTuple):
    """Outcome of classifying one line. Exactly one field is set."""

    event: DomainEvent | None
    reason: DropReason | None


# ---------------------------------------------------------------------------
# Stateless pipeline
# ---------------------------------------------------------------------------


def decode_line(line: str | bytes) -> Any | None:
    """Decode one raw feed line into a generic JSON value.

    Only syntax is checked; the domain shape is the classifier's
    concern.

    Args:
        line: Raw ``data`` payload from the transport. Bytes are decoded
            as strict UTF-8.

    Returns:
        The decoded value, or ``None`` if the line is empty, is not
        valid JSON (including undecodable bytes), or nests too deeply
        to decode.
    """
    if not line or line.isspace():
        return None

    try:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        return json.loads(line)
    except (ValueError, RecursionError):
        return None


def classify_value(value: Any) -> Classification:
    """Map a decoded value onto the closed :data:`DomainEvent` union.

    The ``type`` discriminant is checked by Pydantic before any other
    field is validated, so unrecognised change types are rejected
    without a mapping attempt.

    Args:
        value: Output of :func:`decode_line`.

    Returns:
        A :class:`Classification` carrying either the event or the
        drop reason (``UNRECOGNIZED`` or ``INCOMPATIBLE``).
    """
    if not isinstance(value, dict):
        return Classification(event=None, reason=DropReason.UNRECOGNIZED)

    try:
        event: DomainEvent = _DOMAIN_EVENT_ADAPTER.validate_python(value)
    except ValidationError as exc:
        if any(err["type"] in _UNRECOGNIZED_ERRORS for err in exc.errors()):
            return Classification(event=None, reason=DropReason.UNRECOGNIZED)
        return Classification(event=None, reason=DropReason.INCOMPATIBLE)

    return Classification(event=event, reason=None)


def classify(value: Any) -> DomainEvent | None:
    """Return the typed event for ``value``, or ``None`` if it is dropped."""
    return classify_value(value).event


def classify_line(line: str | bytes) -> Classification:
    """Decode and classify one raw feed line."""
    if not line or line.isspace():
        return Classification(event=None, reason=DropReason.EMPTY)

    value: Any | None = decode_line(line)
    if value is None:
        return Classification(event=None, reason=DropReason.MALFORMED)

    return classify_value(value)


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class ClassifierStats(BaseModel):
    """Immutable snapshot of :class:`LineClassifier` counters.

    Invariant:
        ``lines_received == events_classified + empty + malformed
        + unrecognized + incompatible``
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    lines_received: int = Field(ge=0, description="Raw lines seen.")
    events_classified: int = Field(ge=0, description="Lines that became events.")
    empty: int = Field(ge=0, description="Blank lines and keep-alives.")
    malformed: int = Field(ge=0, description="Lines that were not valid JSON.")
    unrecognized: int = Field(ge=0, description="Unknown or missing type.")
    incompatible: int = Field(
        ge=0,
        description="Known type but schema-incompatible fields.",
    )


# ---------------------------------------------------------------------------
# Stateful classifier
# ---------------------------------------------------------------------------


class LineClassifier:
    """Counting, logging wrapper around :func:`classify_line`.

    One instance is owned by each stream or sequence so that operators
    can see how much of the feed is being dropped and why.

    Thread safety:
        ``classify_line()`` may be called from the transport thread
        while ``stats()`` is called from any other thread. Counters are
        guarded by a single lock.

    Example:
        >>> classifier = LineClassifier()
        >>> classifier.classify_line("{invalid JSON").event is None
        True
        >>> classifier.stats().malformed
        1
    """

    def __init__(self) -> None:
        self._lines_received: int = 0
        self._events_classified: int = 0
        self._drops: dict[DropReason, int] = {reason: 0 for reason in DropReason}
        self._counter_lock: threading.Lock = threading.Lock()

    def classify_line(self, line: str | bytes) -> Classification:
        """Classify ``line`` and record the outcome.

        Args:
            line: Raw ``data`` payload from the transport.

        Returns:
            The :class:`Classification` from :func:`classify_line`.
        """
        result: Classification = classify_line(line)

        with self._counter_lock:
            self._lines_received += 1
            if result.reason is None:
                self._events_classified += 1
                return result
            self._drops[result.reason] += 1
            count: int = self._drops[result.reason]

        if result.reason is DropReason.INCOMPATIBLE:
            self._log_incompatible(line=line, count=count)
        else:
            logger.debug("Dropped feed line (%s)", result.reason.value)
        return result

    def stats(self) -> ClassifierStats:
        """Return a consistent snapshot of the counters."""
        with self._counter_lock:
            return ClassifierStats(
                lines_received=self._lines_received,
                events_classified=self._events_classified,
                empty=self._drops[DropReason.EMPTY],
                malformed=self._drops[DropReason.MALFORMED],
                unrecognized=self._drops[DropReason.UNRECOGNIZED],
                incompatible=self._drops[DropReason.INCOMPATIBLE],
            )

    def _log_incompatible(self, line: str | bytes, count: int) -> None:
        """Log a schema-incompatible payload with rate limiting.

        Re-validates to recover the error detail; this only happens on
        the rate-limited logging path.
        """
        if count <= _LOG_FIRST_N:
            try:
                _DOMAIN_EVENT_ADAPTER.validate_json(line)
            except ValidationError as exc:
                logger.warning(
                    "Dropped schema-incompatible event (%d/%d): %s",
                    count,
                    _LOG_FIRST_N,
                    exc,
                )
        elif count % _LOG_EVERY_N == 0:
            logger.warning(
                "Schema-incompatible events ongoing: %d total",
                count,
            )
