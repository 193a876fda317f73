"""ConnectionManager - owns the single live socket.

State machine:

    DISCONNECTED --connect()--> CONNECTING --token + handshake--> CONNECTED
         ^                           |                                |
         +------ no token / error ---+                                |
         +--- disconnect(): explicit, tab hidden, auth_error, drop ---+

Reconnect triggers: tab visible again (auto_reconnect), successful renewal
after an auth error, the periodic token check finding the token near
expiry, and an unexpected server-side drop while the tab is visible.

A fresh channel is built for every connection, so a rejected credential
is never presented twice and stale handlers from an old channel are
ignored.
"""

import asyncio
from typing import Any, Callable, Dict, Optional, Set

from trackwire.config.constants import (
    AUTH_ERROR_RETRY_DELAY_SECONDS,
    EVENT_AUTH_ERROR,
    EVENT_DISCONNECT,
    INACTIVITY_THRESHOLD_SECONDS,
    PRESENCE_MIN_INTERVAL_SECONDS,
    TOKEN_CHECK_INTERVAL_SECONDS,
)
from trackwire.connection.presence import ActivityMonitor
from trackwire.errors import TransportError
from trackwire.protocols import (
    ClockProtocol,
    ConnectionState,
    ConnectionStatus,
    LoggerProtocol,
    PresenceStatus,
    SocketChannelProtocol,
    TokenProviderProtocol,
)
from trackwire.utils.logging import get_component_logger

ChannelFactory = Callable[[], SocketChannelProtocol]


class ConnectionManager:
    """Connection lifecycle bound to the token lifecycle."""

    def __init__(
        self,
        url: str,
        tokens: TokenProviderProtocol,
        channel_factory: ChannelFactory,
        clock: ClockProtocol,
        auto_reconnect: bool = True,
        token_check_interval_seconds: float = TOKEN_CHECK_INTERVAL_SECONDS,
        auth_error_delay_seconds: float = AUTH_ERROR_RETRY_DELAY_SECONDS,
        inactivity_threshold_seconds: float = INACTIVITY_THRESHOLD_SECONDS,
        presence_min_interval_seconds: float = PRESENCE_MIN_INTERVAL_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Initialize the manager.

        Args:
            url: Socket endpoint
            tokens: Token provider (TokenLifecycle)
            channel_factory: Builds a fresh channel per connection
            clock: Time provider
            auto_reconnect: Reconnect on refocus and after auth recovery
            token_check_interval_seconds: Period of the expiry check while connected
            auth_error_delay_seconds: Fixed wait before renewing after an auth error
            inactivity_threshold_seconds: Idle time before the visitor is inactive
            presence_min_interval_seconds: Minimum gap between user_status emits
            logger: Optional logger
        """
        self._url = url
        self._tokens = tokens
        self._channel_factory = channel_factory
        self._clock = clock
        self._auto_reconnect = auto_reconnect
        self._token_check_interval = token_check_interval_seconds
        self._auth_error_delay = auth_error_delay_seconds
        self._logger = get_component_logger("ConnectionManager", logger)

        self._status = ConnectionStatus.DISCONNECTED
        self._state = ConnectionState(last_activity_at=clock.time())
        self._channel: Optional[SocketChannelProtocol] = None
        # Bumped by every disconnect; a connect that outlives its generation aborts.
        self._generation = 0
        self._token_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._recovering = False
        self._shut_down = False

        self._monitor = ActivityMonitor(
            state=self._state,
            clock=clock,
            send=self._send_presence,
            inactivity_threshold_seconds=inactivity_threshold_seconds,
            presence_min_interval_seconds=presence_min_interval_seconds,
            logger=logger,
        )

    # ─── Observable state ───

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def presence(self) -> PresenceStatus:
        return self._monitor.presence

    def get_state(self) -> ConnectionState:
        """Snapshot of the connection/presence state."""
        return ConnectionState(
            connected=self._state.connected,
            focused=self._state.focused,
            last_activity_at=self._state.last_activity_at,
            considered_inactive=self._state.considered_inactive,
        )

    # ─── Lifecycle ───

    async def start(self) -> bool:
        """Start activity tracking and open the first connection."""
        self._shut_down = False
        self._monitor.start()
        return await self.connect()

    async def connect(self) -> bool:
        """Open a connection with a valid token.

        Returns:
            True when connected. False when no token could be obtained or
            the handshake failed; the manager stays DISCONNECTED.
        """
        if self._shut_down:
            return False
        if self._status is ConnectionStatus.CONNECTED:
            return True
        if self._status is ConnectionStatus.CONNECTING:
            return False

        self._status = ConnectionStatus.CONNECTING
        generation = self._generation

        token = await self._tokens.get_valid_access_token()
        if generation != self._generation:
            return False
        if not token:
            self._status = ConnectionStatus.DISCONNECTED
            self._logger.warning("socket_connect_skipped_no_token")
            return False

        channel = self._channel_factory()
        channel.on(EVENT_AUTH_ERROR, lambda data: self._on_auth_error(channel, data))
        channel.on(EVENT_DISCONNECT, lambda reason: self._on_channel_disconnect(channel, reason))
        self._channel = channel

        try:
            await channel.connect(self._url, token)
        except TransportError as e:
            if self._channel is channel:
                self._channel = None
                self._status = ConnectionStatus.DISCONNECTED
            self._logger.warning("socket_connect_failed", error=str(e))
            return False

        if generation != self._generation or self._channel is not channel:
            await channel.close()
            return False

        self._status = ConnectionStatus.CONNECTED
        self._state.connected = True
        self._start_token_check()
        self._logger.info("socket_connected", url=self._url)
        self._monitor.emit_status(force=True)
        return True

    async def disconnect(self, reason: str = "client") -> None:
        """Close the current connection, if any. Idempotent."""
        self._generation += 1
        self._stop_token_check()
        channel, self._channel = self._channel, None
        was_open = self._status is not ConnectionStatus.DISCONNECTED
        self._status = ConnectionStatus.DISCONNECTED
        self._state.connected = False
        if channel is not None:
            await channel.close()
        if was_open:
            self._logger.info("socket_disconnected", reason=reason)

    async def reconnect(self, reason: str) -> bool:
        await self.disconnect(reason)
        return await self.connect()

    async def shutdown(self) -> None:
        """Tear everything down. Idempotent."""
        self._shut_down = True
        self._monitor.stop()
        await self.disconnect("shutdown")
        tasks = [t for t in self._background if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    # ─── Host signals ───

    async def handle_visibility_change(self, visible: bool) -> None:
        """Tab hidden closes the connection; visible again reopens it."""
        self._monitor.set_focused(visible)
        if not visible:
            if self._status is not ConnectionStatus.DISCONNECTED:
                await self.disconnect("hidden")
        elif self._auto_reconnect and self._status is ConnectionStatus.DISCONNECTED:
            await self.connect()

    def record_activity(self) -> None:
        """Register pointer/keyboard/scroll/touch input."""
        self._monitor.record_activity()

    def check_inactivity(self) -> bool:
        return self._monitor.check_inactivity()

    async def handle_auth_error(self, error: Any = None) -> None:
        """Recover from a rejected credential.

        Skipped when a renewal is already in flight; whoever started it
        owns the follow-up.
        """
        self._logger.warning("socket_auth_error", error=str(error) if error else None)
        if self._recovering or self._tokens.is_request_in_progress():
            return

        self._recovering = True
        try:
            await asyncio.sleep(self._auth_error_delay)
            token = await self._tokens.force_renew()
            await self.disconnect("auth_error")
            if token is None:
                self._logger.error("socket_auth_recovery_failed")
            elif self._auto_reconnect and self._state.focused:
                await self.connect()
        finally:
            self._recovering = False

    # ─── Outbound ───

    async def emit(self, event: str, data: Any) -> None:
        """Send an event over the live connection.

        Raises:
            TransportError: If not connected or the send fails.
        """
        channel = self._channel
        if channel is None or self._status is not ConnectionStatus.CONNECTED:
            raise TransportError("Socket is not connected")
        await channel.emit(event, data)

    def _send_presence(self, event: str, data: Dict[str, Any]) -> None:
        if not self.is_connected:
            return
        self._spawn(self._emit_quietly(event, data))

    async def _emit_quietly(self, event: str, data: Dict[str, Any]) -> None:
        try:
            await self.emit(event, data)
        except TransportError as e:
            self._logger.debug("presence_emit_failed", socket_event=event, error=str(e))

    # ─── Channel callbacks ───

    def _on_auth_error(self, channel: SocketChannelProtocol, data: Any) -> None:
        if channel is self._channel:
            self._spawn(self.handle_auth_error(data))

    def _on_channel_disconnect(self, channel: SocketChannelProtocol, reason: Any) -> None:
        if channel is not self._channel:
            return
        self._channel = None
        self._generation += 1
        self._stop_token_check()
        self._status = ConnectionStatus.DISCONNECTED
        self._state.connected = False
        self._logger.warning("socket_dropped", reason=str(reason))

        if self._auto_reconnect and self._state.focused and not self._shut_down:
            self._spawn(self._reconnect_after_drop())

    async def _reconnect_after_drop(self) -> None:
        await asyncio.sleep(self._auth_error_delay)
        if self._recovering or self._status is not ConnectionStatus.DISCONNECTED:
            return
        await self.connect()

    # ─── Token expiry check ───

    def _start_token_check(self) -> None:
        self._stop_token_check()
        self._token_task = asyncio.create_task(self._token_check_loop())

    def _stop_token_check(self) -> None:
        task, self._token_task = self._token_task, None
        # The loop may be stopping itself from inside a reconnect.
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _token_check_loop(self) -> None:
        me = asyncio.current_task()
        while self._token_task is me:
            try:
                await asyncio.sleep(self._token_check_interval)
            except asyncio.CancelledError:
                break
            if self._token_task is not me:
                break
            if not self._tokens.is_near_expiration():
                continue

            self._logger.info("socket_token_near_expiry")
            token = await self._tokens.get_valid_access_token()
            if token is None:
                self._logger.warning("socket_token_renewal_failed")
                continue
            await self.reconnect("token_renewed")
            break

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


__all__ = ["ChannelFactory", "ConnectionManager"]
