"""Unit tests for infra.sse_transport module.

All external dependencies (requests.Session, sseclient.SSEClient) are
mocked so tests run without network access. The reader loop is driven
synchronously by calling ``_run()`` / ``_run_once()`` directly.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests
from pydantic import ValidationError

from infra.sse_transport import (
    DEFAULT_USER_AGENT,
    RECENTCHANGE_URL,
    SSETransport,
    StreamConfig,
    TransportState,
)


def _sse(data: str, event: str = "message") -> SimpleNamespace:
    """Create an sseclient-like Event."""
    return SimpleNamespace(event=event, data=data, id=None, retry=None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> StreamConfig:
    """Return a config with reconnect disabled and no backoff."""
    return StreamConfig(reconnect=False, reconnect_min_delay=0.0, reconnect_max_delay=0.0)


@pytest.fixture()
def mock_session() -> MagicMock:
    """Return a mocked requests.Session with a 200 streaming response."""
    session: MagicMock = MagicMock()
    session.headers = {}
    session.get.return_value = MagicMock(status_code=200)
    return session


@pytest.fixture()
def transport(config: StreamConfig, mock_session: MagicMock) -> SSETransport:
    """Return an SSETransport whose session is mocked."""
    with patch("infra.sse_transport.requests.Session", return_value=mock_session):
        return SSETransport(config=config)


def _patch_sse(events: list[SimpleNamespace]):
    """Patch SSEClient so that events() yields ``events``."""
    client: MagicMock = MagicMock()
    client.events.return_value = iter(events)
    return patch("infra.sse_transport.sseclient.SSEClient", return_value=client)


# ---------------------------------------------------------------------------
# Configuration Tests
# ---------------------------------------------------------------------------


class TestStreamConfig:
    """Tests for StreamConfig Pydantic model."""

    def test_defaults(self) -> None:
        """Default values target the public recent-change stream."""
        cfg: StreamConfig = StreamConfig()
        assert cfg.url == RECENTCHANGE_URL
        assert cfg.user_agent == DEFAULT_USER_AGENT
        assert cfg.connect_timeout == 10.0
        assert cfg.read_timeout == 120.0
        assert cfg.reconnect is True
        assert cfg.reconnect_min_delay == 1.0
        assert cfg.reconnect_max_delay == 60.0

    def test_headers(self) -> None:
        """Headers request an event stream and identify the client."""
        headers: dict[str, str] = StreamConfig(user_agent="bot/1.0").headers()
        assert headers == {"Accept": "text/event-stream", "User-Agent": "bot/1.0"}

    def test_zero_timeout_rejected(self) -> None:
        """Timeouts must be positive."""
        with pytest.raises(ValidationError):
            StreamConfig(read_timeout=0)

    def test_empty_url_rejected(self) -> None:
        """The URL must be non-empty."""
        with pytest.raises(ValidationError):
            StreamConfig(url="")

    def test_backoff_bounds_checked(self) -> None:
        """Min delay may not exceed max delay."""
        with pytest.raises(ValidationError):
            StreamConfig(reconnect_min_delay=10.0, reconnect_max_delay=1.0)


# ---------------------------------------------------------------------------
# Lifecycle Tests
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Tests for connect() / close() state handling."""

    def test_initial_state(self, transport: SSETransport) -> None:
        """A new transport is in INIT."""
        assert transport.state == TransportState.INIT

    def test_session_headers_set(self, mock_session: MagicMock, transport: SSETransport) -> None:
        """The session carries the configured headers."""
        assert mock_session.headers["User-Agent"] == DEFAULT_USER_AGENT

    def test_connect_starts_reader_thread(self, transport: SSETransport) -> None:
        """connect() moves to CONNECTING and starts a daemon thread."""
        with patch("infra.sse_transport.threading.Thread") as mock_thread:
            transport.connect()
        assert transport.state == TransportState.CONNECTING
        mock_thread.assert_called_once()
        assert mock_thread.call_args.kwargs["daemon"] is True
        mock_thread.return_value.start.assert_called_once()

    def test_connect_twice_raises(self, transport: SSETransport) -> None:
        """connect() is only valid from INIT."""
        with patch("infra.sse_transport.threading.Thread"):
            transport.connect()
            with pytest.raises(RuntimeError, match="Cannot connect"):
                transport.connect()

    def test_close_idempotent(self, transport: SSETransport, mock_session: MagicMock) -> None:
        """close() can be called repeatedly."""
        transport.close()
        transport.close()
        assert transport.state == TransportState.CLOSED
        mock_session.close.assert_called_once()

    def test_connect_after_close_raises(self, transport: SSETransport) -> None:
        """A closed transport cannot be reconnected."""
        transport.close()
        with pytest.raises(RuntimeError):
            transport.connect()

    def test_close_releases_open_response(self, transport: SSETransport) -> None:
        """close() closes an in-flight response to unblock the reader."""
        response: MagicMock = MagicMock()
        transport._response = response
        transport.close()
        response.close.assert_called_once()

    def test_close_joins_reader_thread(self, transport: SSETransport) -> None:
        """close() joins the reader thread when called from elsewhere."""
        thread: MagicMock = MagicMock()
        transport._thread = thread
        transport.close(timeout=1.0)
        thread.join.assert_called_once_with(timeout=1.0)


# ---------------------------------------------------------------------------
# Reader Tests
# ---------------------------------------------------------------------------


class TestRunOnce:
    """Tests for a single connection's message pump."""

    def test_forwards_message_data(self, transport: SSETransport) -> None:
        """Each message payload reaches every message hook in order."""
        received: list[str] = []
        transport.on_message(received.append)
        with _patch_sse([_sse('{"a": 1}'), _sse('{"b": 2}')]):
            count: int = transport._run_once()
        assert count == 2
        assert received == ['{"a": 1}', '{"b": 2}']
        assert transport.stats()["messages_received"] == 2

    def test_skips_other_event_types_and_empty_data(self, transport: SSETransport) -> None:
        """Non-message events and empty payloads are not forwarded."""
        received: list[str] = []
        transport.on_message(received.append)
        with _patch_sse([_sse("x", event="error"), _sse(""), _sse("ok")]):
            transport._run_once()
        assert received == ["ok"]

    def test_open_hook_and_state(self, transport: SSETransport) -> None:
        """A successful response fires on_open and moves to OPEN."""
        opened: Mock = Mock()
        states: list[TransportState] = []
        transport.on_open(opened)
        transport.on_open(lambda: states.append(transport.state))
        with _patch_sse([]):
            transport._run_once()
        opened.assert_called_once_with()
        assert states == [TransportState.OPEN]

    def test_request_parameters(self, transport: SSETransport, mock_session: MagicMock) -> None:
        """The stream is requested with stream=True and both timeouts."""
        with _patch_sse([]):
            transport._run_once()
        mock_session.get.assert_called_once_with(
            RECENTCHANGE_URL,
            stream=True,
            timeout=(10.0, 120.0),
        )

    def test_http_error_propagates(self, transport: SSETransport, mock_session: MagicMock) -> None:
        """An HTTP error status raises from _run_once."""
        mock_session.get.return_value.raise_for_status.side_effect = (
            requests.HTTPError("503")
        )
        with pytest.raises(requests.HTTPError):
            transport._run_once()
        mock_session.get.return_value.close.assert_called_once()
        assert transport.state == TransportState.INIT

    def test_hook_error_isolated(self, transport: SSETransport) -> None:
        """A failing hook neither stops the pump nor other hooks."""
        received: list[str] = []
        transport.on_message(Mock(side_effect=ValueError("boom")))
        transport.on_message(received.append)
        with _patch_sse([_sse("1"), _sse("2")]):
            transport._run_once()
        assert received == ["1", "2"]
        assert transport.stats()["callback_errors"] == 2

    def test_response_closed_after_stream_ends(
        self, transport: SSETransport, mock_session: MagicMock
    ) -> None:
        """The response is released when the stream ends."""
        with _patch_sse([_sse("1")]):
            transport._run_once()
        mock_session.get.return_value.close.assert_called_once()


class TestRunLoop:
    """Tests for the reconnecting reader loop."""

    def test_no_reconnect_closes(self, transport: SSETransport) -> None:
        """With reconnect disabled, a drop fires on_error and closes."""
        errors: list[Exception] = []
        transport.on_error(errors.append)
        with _patch_sse([_sse("1")]):
            transport._run()
        assert transport.state == TransportState.CLOSED
        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionError)

    def test_connect_failure_reported(
        self, transport: SSETransport, mock_session: MagicMock
    ) -> None:
        """A connection error is passed to on_error hooks."""
        failure: requests.ConnectionError = requests.ConnectionError("dns")
        mock_session.get.side_effect = failure
        errors: list[Exception] = []
        transport.on_error(errors.append)
        transport._run()
        assert errors == [failure]

    def test_reconnects_after_drop(self, mock_session: MagicMock) -> None:
        """With reconnect enabled, the transport opens a new connection."""
        cfg: StreamConfig = StreamConfig(reconnect_min_delay=0.0, reconnect_max_delay=0.0)
        with patch("infra.sse_transport.requests.Session", return_value=mock_session):
            sut: SSETransport = SSETransport(config=cfg)

        received: list[str] = []
        sut.on_message(received.append)

        def close_on_second(data: str) -> None:
            if data == "second":
                sut.close()

        sut.on_message(close_on_second)

        first: MagicMock = MagicMock()
        first.events.return_value = iter([_sse("first")])
        second: MagicMock = MagicMock()
        second.events.return_value = iter([_sse("second"), _sse("never")])
        with patch(
            "infra.sse_transport.sseclient.SSEClient",
            side_effect=[first, second],
        ):
            sut._run()

        assert received == ["first", "second"]
        assert mock_session.get.call_count == 2
        assert sut.stats()["reconnect_count"] == 1
        assert sut.state == TransportState.CLOSED

    def test_close_during_backoff_stops(self, mock_session: MagicMock) -> None:
        """close() from an error hook ends the loop without reconnecting."""
        cfg: StreamConfig = StreamConfig(reconnect_min_delay=0.0, reconnect_max_delay=0.0)
        with patch("infra.sse_transport.requests.Session", return_value=mock_session):
            sut: SSETransport = SSETransport(config=cfg)
        mock_session.get.side_effect = requests.ConnectionError("down")
        sut.on_error(lambda exc: sut.close())
        sut._run()
        assert mock_session.get.call_count == 1
        assert sut.stats()["reconnect_count"] == 0
