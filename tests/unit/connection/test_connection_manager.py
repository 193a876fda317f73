"""Unit tests for ConnectionManager: state machine, focus, auth recovery."""

import asyncio

import pytest

from trackwire.connection.manager import ConnectionManager
from trackwire.errors import TransportError
from trackwire.protocols import ConnectionStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

URL = "ws://tracking.test/socket"


@pytest.fixture
def make_manager(token_provider, channel_factory, fake_clock, mock_logger):
    managers = []

    def _make(**overrides):
        options = dict(
            url=URL,
            tokens=token_provider,
            channel_factory=channel_factory,
            clock=fake_clock,
            auth_error_delay_seconds=0.0,
            presence_min_interval_seconds=0.0,
            logger=mock_logger,
        )
        options.update(overrides)
        manager = ConnectionManager(**options)
        managers.append(manager)
        return manager

    yield _make


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


# =============================================================================
# CONNECT / DISCONNECT
# =============================================================================


class TestConnect:
    async def test_connect_binds_token_to_channel(self, make_manager, channel_factory):
        manager = make_manager()

        assert await manager.connect() is True

        assert manager.status is ConnectionStatus.CONNECTED
        assert manager.get_state().connected is True
        assert channel_factory.latest.connect_calls == [{"url": URL, "token": "token-1"}]
        await manager.shutdown()

    async def test_no_token_stays_disconnected(self, make_manager, token_provider, channel_factory):
        token_provider.token = None
        manager = make_manager()

        assert await manager.connect() is False

        assert manager.status is ConnectionStatus.DISCONNECTED
        assert channel_factory.channels == []

    async def test_handshake_failure_stays_disconnected(self, make_manager, channel_factory):
        channel_factory.fail_connect = True
        manager = make_manager()

        assert await manager.connect() is False
        assert manager.status is ConnectionStatus.DISCONNECTED

    async def test_connect_when_connected_is_noop(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.connect()

        assert await manager.connect() is True
        assert len(channel_factory.channels) == 1
        await manager.shutdown()

    async def test_disconnect_closes_channel(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.connect()

        await manager.disconnect()

        assert channel_factory.latest.closed
        assert manager.status is ConnectionStatus.DISCONNECTED
        await manager.disconnect()

    async def test_emit_requires_connection(self, make_manager, channel_factory):
        manager = make_manager()
        with pytest.raises(TransportError):
            await manager.emit("tracking:batch", {})

        await manager.connect()
        await manager.emit("tracking:batch", {"events": []})

        assert channel_factory.latest.events_named("tracking:batch") == [{"events": []}]
        await manager.shutdown()


# =============================================================================
# VISIBILITY
# =============================================================================


class TestVisibility:
    async def test_hidden_tab_closes_and_visible_tab_reopens(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.connect()

        await manager.handle_visibility_change(False)
        assert manager.status is ConnectionStatus.DISCONNECTED
        assert channel_factory.channels[0].closed
        assert manager.get_state().focused is False

        await manager.handle_visibility_change(True)
        assert manager.status is ConnectionStatus.CONNECTED
        assert len(channel_factory.channels) == 2
        await manager.shutdown()

    async def test_visible_without_auto_reconnect_stays_closed(self, make_manager):
        manager = make_manager(auto_reconnect=False)
        await manager.connect()

        await manager.handle_visibility_change(False)
        await manager.handle_visibility_change(True)

        assert manager.status is ConnectionStatus.DISCONNECTED


# =============================================================================
# AUTH ERRORS
# =============================================================================


class TestAuthError:
    async def test_auth_error_renews_then_reconnects_with_new_token(
        self, make_manager, token_provider, channel_factory
    ):
        token_provider.renewed_tokens = ["token-2"]
        manager = make_manager()
        await manager.connect()
        first = channel_factory.latest

        await first.fire("auth_error", {"message": "invalid token"})
        await _settle()

        assert token_provider.renew_calls == 1
        assert first.closed
        assert manager.status is ConnectionStatus.CONNECTED
        assert channel_factory.latest is not first
        assert channel_factory.latest.connect_calls[0]["token"] == "token-2"
        await manager.shutdown()

    async def test_auth_error_skipped_while_renewal_in_flight(self, make_manager, token_provider):
        manager = make_manager()
        await manager.connect()
        token_provider.in_progress = True

        await manager.handle_auth_error("invalid token")

        assert token_provider.renew_calls == 0
        assert manager.status is ConnectionStatus.CONNECTED
        await manager.shutdown()

    async def test_failed_renewal_leaves_disconnected(self, make_manager, token_provider):
        token_provider.renewed_tokens = [None]
        manager = make_manager()
        await manager.connect()

        await manager.handle_auth_error("invalid token")

        assert manager.status is ConnectionStatus.DISCONNECTED

    async def test_auth_error_from_stale_channel_is_ignored(self, make_manager, token_provider, channel_factory):
        manager = make_manager()
        await manager.connect()
        stale = channel_factory.latest
        await manager.disconnect()
        await manager.connect()

        await stale.fire("auth_error", {})
        await _settle()

        assert token_provider.renew_calls == 0
        await manager.shutdown()


# =============================================================================
# TOKEN CHECK AND DROPS
# =============================================================================


class TestBackgroundReconnects:
    async def test_periodic_check_renews_and_reconnects(self, make_manager, token_provider, channel_factory):
        manager = make_manager(token_check_interval_seconds=0.01)
        await manager.connect()
        token_provider.near_expiration = True
        token_provider.renewed_tokens = ["token-2"]

        await asyncio.sleep(0.1)

        assert len(channel_factory.channels) == 2
        assert channel_factory.latest.connect_calls[0]["token"] == "token-2"
        assert manager.is_connected
        await manager.shutdown()

    async def test_server_drop_reconnects_when_focused(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.connect()

        await channel_factory.latest.drop()
        await asyncio.sleep(0.05)

        assert manager.is_connected
        assert len(channel_factory.channels) == 2
        await manager.shutdown()

    async def test_shutdown_is_idempotent(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.start()

        await manager.shutdown()
        await manager.shutdown()

        assert manager.status is ConnectionStatus.DISCONNECTED
        assert await manager.connect() is False


# =============================================================================
# PRESENCE
# =============================================================================


class TestPresence:
    async def test_status_emitted_on_connect(self, make_manager, channel_factory):
        manager = make_manager()
        await manager.start()
        await _settle()

        assert channel_factory.latest.events_named("user_status") == [{"status": "active"}]
        await manager.shutdown()

    async def test_inactivity_and_return_emit_transitions(self, make_manager, channel_factory, fake_clock):
        manager = make_manager(inactivity_threshold_seconds=60)
        await manager.start()

        fake_clock.advance(61)
        assert manager.check_inactivity() is True
        manager.record_activity()
        await _settle()

        channel = channel_factory.latest
        assert channel.events_named("user_inactive") == [{"status": "inactive"}]
        assert channel.events_named("user_active") == [{"status": "active"}]
        assert manager.get_state().considered_inactive is False
        await manager.shutdown()
