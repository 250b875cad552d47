"""Core domain layer for the Wikimedia EventStreams adapter.

This package provides the typed recent-change events, the line decoder
and classifier shared by every front end, and the listener registry
used by the callback front end. All event models are Pydantic-based
with frozen configuration for immutability.
"""

from core.classifier import (
    Classification,
    ClassifierStats,
    DropReason,
    LineClassifier,
    classify,
    classify_line,
    classify_value,
    decode_line,
)
from core.events import (
    DomainEvent,
    EditEvent,
    EventKind,
    EventLength,
    EventMeta,
    EventRevision,
    LogEvent,
)
from core.registry import ListenerRegistry, filter_by_wiki

__all__: list[str] = [
    "Classification",
    "ClassifierStats",
    "DomainEvent",
    "DropReason",
    "EditEvent",
    "EventKind",
    "EventLength",
    "EventMeta",
    "EventRevision",
    "LineClassifier",
    "ListenerRegistry",
    "LogEvent",
    "classify",
    "classify_line",
    "classify_value",
    "decode_line",
    "filter_by_wiki",
]
