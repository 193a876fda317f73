"""Unit tests for SocketBatchTransport and HttpBatchTransport."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from tests.fixtures.mocks import FakeTokenProvider
from trackwire.errors import TransportError
from trackwire.protocols import BatchPayload
from trackwire.transport import HttpBatchTransport, SocketBatchTransport, truncate_payload


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _payload(make_event, count=3) -> BatchPayload:
    return BatchPayload(
        visitor_id="visitor-1",
        session_id="session-1",
        events=[make_event("CLICK", {"n": i}) for i in range(count)],
    )


def _response(status_code: int, json_data=None) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json=json_data if json_data is not None else {},
        request=httpx.Request("POST", "http://api.test/pixel/tracking-v2/events"),
    )


def _connection(connected=True) -> MagicMock:
    connection = MagicMock()
    connection.is_connected = connected
    connection.emit = AsyncMock()
    return connection


# =============================================================================
# TRUNCATION
# =============================================================================


def test_truncate_payload_caps_events(make_event):
    payload = _payload(make_event, 7)

    truncated = truncate_payload(payload, limit=5)

    assert len(truncated.events) == 5
    assert truncated.events == payload.events[:5]
    assert truncate_payload(payload, limit=10) is payload


# =============================================================================
# SOCKET TRANSPORT
# =============================================================================


class TestSocketBatchTransport:
    async def test_emits_batch_event(self, make_event, mock_logger):
        connection = _connection()
        transport = SocketBatchTransport(connection, retry_delay_seconds=0.0, logger=mock_logger)
        payload = _payload(make_event)

        result = await transport.send(payload)

        assert result.ok
        assert result.accepted == 3
        connection.emit.assert_awaited_once_with("tracking:batch", payload.to_dict())

    async def test_not_connected_fails_without_retry(self, make_event, mock_logger):
        connection = _connection(connected=False)
        connection.emit.side_effect = TransportError("Socket is not connected")
        transport = SocketBatchTransport(connection, retry_delay_seconds=0.0, logger=mock_logger)

        result = await transport.send(_payload(make_event))

        assert not result.ok
        assert connection.emit.await_count == 1

    async def test_transient_failure_is_retried(self, make_event, mock_logger):
        connection = _connection()
        connection.emit.side_effect = [TransportError("blip"), None]
        transport = SocketBatchTransport(connection, retry_delay_seconds=0.0, logger=mock_logger)

        result = await transport.send(_payload(make_event))

        assert result.ok
        assert connection.emit.await_count == 2

    async def test_empty_payload_is_trivially_accepted(self, mock_logger):
        connection = _connection()
        transport = SocketBatchTransport(connection, logger=mock_logger)

        result = await transport.send(BatchPayload("v", "s", []))

        assert result.ok and result.accepted == 0
        connection.emit.assert_not_called()


# =============================================================================
# HTTP TRANSPORT
# =============================================================================


class TestHttpBatchTransport:
    async def test_posts_payload_with_bearer_token(self, make_event, mock_logger):
        transport = HttpBatchTransport(
            "http://api.test/pixel", tokens=FakeTokenProvider("tok"), retry_delay_seconds=0.0, logger=mock_logger
        )
        payload = _payload(make_event)
        mock_post = AsyncMock(return_value=_response(201))

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(payload)

        assert result.ok
        assert result.status_code == 201
        args, kwargs = mock_post.call_args
        assert args[0] == "http://api.test/pixel/tracking-v2/events"
        assert kwargs["json"] == payload.to_dict()
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    async def test_server_errors_are_retried(self, make_event, mock_logger):
        transport = HttpBatchTransport(
            "http://api.test/pixel", max_retries=2, retry_delay_seconds=0.0, logger=mock_logger
        )
        mock_post = AsyncMock(side_effect=[_response(500), _response(502), _response(200)])

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert result.ok
        assert mock_post.await_count == 3

    async def test_gives_up_after_max_retries(self, make_event, mock_logger):
        transport = HttpBatchTransport(
            "http://api.test/pixel", max_retries=2, retry_delay_seconds=0.0, logger=mock_logger
        )
        mock_post = AsyncMock(return_value=_response(503))

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert not result.ok
        assert result.status_code == 503
        assert mock_post.await_count == 3

    async def test_client_errors_are_not_retried(self, make_event, mock_logger):
        transport = HttpBatchTransport("http://api.test/pixel", retry_delay_seconds=0.0, logger=mock_logger)
        mock_post = AsyncMock(return_value=_response(400, {"message": "bad"}))

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert not result.ok
        assert result.status_code == 400
        assert mock_post.await_count == 1

    async def test_network_errors_are_retried(self, make_event, mock_logger):
        transport = HttpBatchTransport("http://api.test/pixel", retry_delay_seconds=0.0, logger=mock_logger)
        error = httpx.ConnectError("refused", request=httpx.Request("POST", "http://api.test"))
        mock_post = AsyncMock(side_effect=[error, _response(200)])

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert result.ok

    async def test_rejected_credential_renews_and_retries(self, make_event, mock_logger):
        tokens = FakeTokenProvider("old")
        tokens.renewed_tokens = ["new"]
        transport = HttpBatchTransport(
            "http://api.test/pixel", tokens=tokens, retry_delay_seconds=0.0, logger=mock_logger
        )
        mock_post = AsyncMock(side_effect=[_response(401), _response(200)])

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert result.ok
        assert tokens.renew_calls == 1
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer new"

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_without_token_provider_is_final(self, make_event, mock_logger, status):
        transport = HttpBatchTransport("http://api.test/pixel", retry_delay_seconds=0.0, logger=mock_logger)
        mock_post = AsyncMock(return_value=_response(status))

        with patch("httpx.AsyncClient.post", mock_post):
            result = await transport.send(_payload(make_event))

        assert not result.ok
        assert mock_post.await_count == 1
