"""Activity, inactivity and presence reporting.

The host calls record_activity() on pointer/keyboard/scroll/touch input
and set_focused() on visibility changes. A debounce timer flips the
visitor to inactive once no activity has been seen for the inactivity
threshold.

Presence goes out through the send callable:
- user_status {status}: on focus change, on activity, on connect.
  At most one per presence_min_interval; a suppressed update is sent as
  a trailing update when the interval ends.
- user_active / user_inactive {status}: on activity transitions, never
  throttled.

Must be driven from inside the running event loop.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from trackwire.config.constants import (
    EVENT_USER_ACTIVE,
    EVENT_USER_INACTIVE,
    EVENT_USER_STATUS,
    INACTIVITY_THRESHOLD_SECONDS,
    PRESENCE_MIN_INTERVAL_SECONDS,
)
from trackwire.protocols import (
    ClockProtocol,
    ConnectionState,
    LoggerProtocol,
    PresenceStatus,
)
from trackwire.utils.logging import get_component_logger

PresenceSender = Callable[[str, Dict[str, Any]], None]


class ActivityMonitor:
    """Tracks activity/focus on a shared ConnectionState and reports presence."""

    def __init__(
        self,
        state: ConnectionState,
        clock: ClockProtocol,
        send: PresenceSender,
        inactivity_threshold_seconds: float = INACTIVITY_THRESHOLD_SECONDS,
        presence_min_interval_seconds: float = PRESENCE_MIN_INTERVAL_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._state = state
        self._clock = clock
        self._send = send
        self._threshold = inactivity_threshold_seconds
        self._min_interval = presence_min_interval_seconds
        self._logger = get_component_logger("ActivityMonitor", logger)

        self._inactivity_handle: Optional[asyncio.TimerHandle] = None
        self._trailing_handle: Optional[asyncio.TimerHandle] = None
        self._last_status_sent_at: Optional[float] = None
        self._running = False

    @property
    def presence(self) -> PresenceStatus:
        if self._state.focused and not self._state.considered_inactive:
            return PresenceStatus.ACTIVE
        return PresenceStatus.INACTIVE

    def start(self) -> None:
        """Begin inactivity tracking from now."""
        if self._running:
            return
        self._running = True
        self._state.last_activity_at = self._clock.time()
        self._arm_inactivity_timer()

    def stop(self) -> None:
        """Cancel pending timers. Idempotent."""
        self._running = False
        for handle in (self._inactivity_handle, self._trailing_handle):
            if handle is not None:
                handle.cancel()
        self._inactivity_handle = None
        self._trailing_handle = None

    def record_activity(self) -> None:
        """Register user input."""
        self._state.last_activity_at = self._clock.time()

        if self._state.considered_inactive:
            self._state.considered_inactive = False
            self._logger.debug("user_became_active")
            self._send(EVENT_USER_ACTIVE, {"status": PresenceStatus.ACTIVE.value})

        self.emit_status()
        if self._running:
            self._arm_inactivity_timer()

    def set_focused(self, focused: bool) -> None:
        """Register a visibility change."""
        if focused == self._state.focused:
            return
        self._state.focused = focused
        self.emit_status()

    def check_inactivity(self) -> bool:
        """Flip to inactive if the threshold has passed. Returns the new flag."""
        idle = self._clock.time() - self._state.last_activity_at
        if idle >= self._threshold and not self._state.considered_inactive:
            self._state.considered_inactive = True
            self._logger.debug("user_became_inactive", idle_seconds=round(idle, 1))
            self._send(EVENT_USER_INACTIVE, {"status": PresenceStatus.INACTIVE.value})
        return self._state.considered_inactive

    def emit_status(self, force: bool = False) -> None:
        """Send user_status, throttled to one per min interval."""
        now = self._clock.time()
        elapsed = None if self._last_status_sent_at is None else now - self._last_status_sent_at

        if force or elapsed is None or elapsed >= self._min_interval:
            self._send_status(now)
            return

        if self._trailing_handle is None:
            loop = asyncio.get_running_loop()
            self._trailing_handle = loop.call_later(
                self._min_interval - elapsed, self._flush_trailing
            )

    def _send_status(self, now: float) -> None:
        if self._trailing_handle is not None:
            self._trailing_handle.cancel()
            self._trailing_handle = None
        self._last_status_sent_at = now
        self._send(EVENT_USER_STATUS, {"status": self.presence.value})

    def _flush_trailing(self) -> None:
        self._trailing_handle = None
        self._send_status(self._clock.time())

    def _arm_inactivity_timer(self) -> None:
        if self._inactivity_handle is not None:
            self._inactivity_handle.cancel()
        loop = asyncio.get_running_loop()
        self._inactivity_handle = loop.call_later(self._threshold, self._on_inactivity_timer)

    def _on_inactivity_timer(self) -> None:
        self._inactivity_handle = None
        if self.check_inactivity() or not self._running:
            return
        # Loop time and wall time drift apart; wait out the remainder.
        remaining = self._threshold - (self._clock.time() - self._state.last_activity_at)
        loop = asyncio.get_running_loop()
        self._inactivity_handle = loop.call_later(max(remaining, 0.001), self._on_inactivity_timer)


__all__ = ["ActivityMonitor", "PresenceSender"]
