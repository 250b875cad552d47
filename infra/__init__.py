"""Infrastructure layer for the Wikimedia EventStreams adapter.

This package provides the SSE transport and the two delivery front
ends built on the core pipeline: callback subscription
(:class:`EventStream`) and async iteration (:class:`EventSequence`).
"""

from infra.async_stream import EventSequence, iter_sse_data, open_event_sequence
from infra.event_stream import EventStream, StreamClosedError, StreamState
from infra.sse_transport import (
    RECENTCHANGE_URL,
    SSETransport,
    StreamConfig,
    TransportState,
)

__all__: list[str] = [
    "EventSequence",
    "EventStream",
    "RECENTCHANGE_URL",
    "SSETransport",
    "StreamClosedError",
    "StreamConfig",
    "StreamState",
    "TransportState",
    "iter_sse_data",
    "open_event_sequence",
]
