"""Rate Limiter - per-event-type minimum interval gate.

Drops high-frequency events that arrive sooner than a configured minimum
interval after the last allowed event of the same type. Types without a
rule always pass.

Features:
- Per-event-type intervals (milliseconds)
- Rules mutable at runtime (set_rule / remove_rule / update_config)
- Per-type throttled counters
- Pure read of the remaining wait for UI feedback

Usage:
    limiter = RateLimiter(clock, rules={"SCROLL": 100})

    if limiter.should_allow("SCROLL"):
        aggregator.add(event)
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from trackwire.config.constants import DEFAULT_THROTTLE_RULES
from trackwire.errors import ConfigurationError
from trackwire.protocols import ClockProtocol, LoggerProtocol
from trackwire.utils.logging import get_component_logger


@dataclass
class RateLimiterStats:
    """Counters since construction or the last reset_all()."""
    allowed: int = 0
    throttled: int = 0
    throttled_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "throttled": self.throttled,
            "throttled_by_type": dict(self.throttled_by_type),
        }


def _validate_interval(event_type: str, interval_ms: float) -> None:
    if interval_ms < 0:
        raise ConfigurationError(
            f"Throttle interval for {event_type!r} must be >= 0 ms, got {interval_ms}"
        )


def _elapsed_ms(now: float, last: float) -> float:
    # Microsecond resolution; epoch floats carry sub-microsecond noise.
    return round((now - last) * 1000.0, 3)


class RateLimiter:
    """Minimum-interval rate limiter keyed by event type."""

    def __init__(
        self,
        clock: ClockProtocol,
        rules: Optional[Mapping[str, float]] = None,
        enabled: bool = True,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Initialize rate limiter.

        Args:
            clock: Time provider
            rules: event_type -> minimum interval in ms, merged over the defaults
            enabled: When False every event is allowed
            logger: Optional logger
        """
        self._clock = clock
        self._logger = get_component_logger("RateLimiter", logger)
        self._enabled = enabled

        merged = dict(DEFAULT_THROTTLE_RULES)
        merged.update(rules or {})
        for event_type, interval in merged.items():
            _validate_interval(event_type, interval)
        self._rules: Dict[str, float] = merged

        # event_type -> epoch seconds of the last allowed event
        self._last_allowed: Dict[str, float] = {}
        self._stats = RateLimiterStats()

        self._logger.debug("rate_limiter_initialized", rules=self._rules, enabled=enabled)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def rules(self) -> Dict[str, float]:
        return dict(self._rules)

    def should_allow(self, event_type: str) -> bool:
        """Check whether an event of this type may pass now.

        Allowed events update the type's last timestamp; throttled events
        are counted and otherwise ignored.
        """
        interval_ms = self._rules.get(event_type)
        if not self._enabled or interval_ms is None:
            self._stats.allowed += 1
            return True

        now = self._clock.time()
        last = self._last_allowed.get(event_type)

        if last is None or _elapsed_ms(now, last) >= interval_ms:
            self._last_allowed[event_type] = now
            self._stats.allowed += 1
            return True

        self._stats.throttled += 1
        self._stats.throttled_by_type[event_type] = (
            self._stats.throttled_by_type.get(event_type, 0) + 1
        )
        return False

    def get_time_until_next(self, event_type: str) -> float:
        """Milliseconds until an event of this type would be allowed.

        Pure read: never mutates limiter state.
        """
        interval_ms = self._rules.get(event_type)
        if not self._enabled or interval_ms is None:
            return 0.0

        last = self._last_allowed.get(event_type)
        if last is None:
            return 0.0

        elapsed_ms = _elapsed_ms(self._clock.time(), last)
        return max(0.0, interval_ms - elapsed_ms)

    def set_rule(self, event_type: str, interval_ms: float) -> None:
        """Add or replace the rule for an event type."""
        _validate_interval(event_type, interval_ms)
        self._rules[event_type] = interval_ms
        self._logger.info("rate_limit_rule_set", event_type=event_type, interval_ms=interval_ms)

    def remove_rule(self, event_type: str) -> None:
        """Remove the rule for an event type (it becomes unthrottled)."""
        if self._rules.pop(event_type, None) is not None:
            self._logger.info("rate_limit_rule_removed", event_type=event_type)

    def update_config(
        self,
        enabled: Optional[bool] = None,
        rules: Optional[Mapping[str, float]] = None,
    ) -> None:
        """Apply a partial configuration change; rules are merged."""
        if rules:
            for event_type, interval in rules.items():
                _validate_interval(event_type, interval)
            self._rules.update(rules)
        if enabled is not None:
            self._enabled = enabled
        self._logger.info("rate_limiter_config_updated", enabled=self._enabled, rules=self._rules)

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        self._logger.info("rate_limiter_toggled", enabled=enabled)

    def reset(self, event_type: str) -> None:
        """Forget the last timestamp so the next event of this type passes."""
        self._last_allowed.pop(event_type, None)

    def reset_all(self) -> None:
        """Forget all timestamps and counters."""
        self._last_allowed.clear()
        self._stats = RateLimiterStats()
        self._logger.debug("rate_limiter_reset")

    def get_stats(self) -> RateLimiterStats:
        return RateLimiterStats(
            allowed=self._stats.allowed,
            throttled=self._stats.throttled,
            throttled_by_type=dict(self._stats.throttled_by_type),
        )


__all__ = ["RateLimiter", "RateLimiterStats"]
