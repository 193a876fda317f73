"""EventAggregator - time-window consolidation of noisy events.

Events of a fixed allow-list of high-frequency, low-information types are
grouped by fingerprint inside a rolling window and emitted as one event
carrying an aggregatedCount. Every other event gets a unique fingerprint
and passes through the buffer untouched.

Architecture:
    RateLimiter -> add() -> buckets (insertion ordered)
                               | window timer / bucket cap
                          flush() -> on_flush(events) -> DurableQueue

Usage:
    aggregator = EventAggregator(clock, window_ms=1000, on_flush=queue_events)
    await aggregator.start()
    aggregator.add(event)
    ...
    await aggregator.stop()
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from trackwire.config.constants import (
    AGGREGABLE_EVENT_TYPES,
    DEFAULT_AGGREGATION_MAX_BUCKETS,
    DEFAULT_AGGREGATION_WINDOW_MS,
)
from trackwire.context import isoformat
from trackwire.errors import ConfigurationError
from trackwire.protocols import ClockProtocol, LoggerProtocol, TrackingEvent
from trackwire.utils.logging import get_component_logger

FlushCallback = Callable[[List[TrackingEvent]], None]

_POINTER_TYPES = frozenset({"MOUSE_MOVE", "HOVER", "MOUSE_ENTER", "MOUSE_LEAVE"})
_FIELD_TYPES = frozenset({"FOCUS", "BLUR"})


@dataclass
class AggregationBucket:
    """Open bucket for one fingerprint in the current window."""
    representative: TrackingEvent
    count: int
    first_occurred_at: str
    last_occurred_at: str
    merged_metadata: Dict[str, Any] = field(default_factory=dict)

    def materialize(self) -> TrackingEvent:
        """Build the output event for this bucket."""
        metadata = dict(self.merged_metadata)
        metadata["aggregatedCount"] = self.count
        metadata["firstOccurredAt"] = self.first_occurred_at
        metadata["lastOccurredAt"] = self.last_occurred_at
        return replace(
            self.representative,
            occurred_at=self.last_occurred_at,
            metadata=metadata,
        )


@dataclass
class AggregatorStats:
    total_received: int = 0
    total_emitted: int = 0
    emitted_by_type: Dict[str, int] = field(default_factory=dict)

    @property
    def aggregation_ratio(self) -> float:
        """Percentage reduction from received to emitted events."""
        if self.total_received == 0:
            return 0.0
        return (1 - self.total_emitted / self.total_received) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_received": self.total_received,
            "total_emitted": self.total_emitted,
            "aggregation_ratio": round(self.aggregation_ratio, 2),
            "emitted_by_type": dict(self.emitted_by_type),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def merge_metadata(existing: Dict[str, Any], incoming: Dict[str, Any]) -> None:
    """Merge incoming metadata into existing, in place.

    - numbers: latest value, plus running <key>Min / <key>Max
    - lists: union without duplicates, first-seen order
    - anything else: latest value wins
    """
    for key, incoming_value in incoming.items():
        if key not in existing:
            existing[key] = incoming_value
            continue

        existing_value = existing[key]

        if _is_number(incoming_value) and _is_number(existing_value):
            min_key, max_key = f"{key}Min", f"{key}Max"
            existing[min_key] = min(existing.get(min_key, existing_value), incoming_value)
            existing[max_key] = max(existing.get(max_key, existing_value), incoming_value)
            existing[key] = incoming_value
        elif isinstance(incoming_value, list) and isinstance(existing_value, list):
            merged = list(existing_value)
            for item in incoming_value:
                if item not in merged:
                    merged.append(item)
            existing[key] = merged
        else:
            existing[key] = incoming_value


class EventAggregator:
    """Fingerprint-keyed time-window aggregator.

    Flushes on a fixed timer and whenever the number of open buckets
    reaches max_buckets. Flushed events go to on_flush; without a callback
    they are held until the next flush() call so nothing is dropped.
    """

    def __init__(
        self,
        clock: ClockProtocol,
        window_ms: int = DEFAULT_AGGREGATION_WINDOW_MS,
        max_buckets: int = DEFAULT_AGGREGATION_MAX_BUCKETS,
        enabled: bool = True,
        on_flush: Optional[FlushCallback] = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> None:
        self._validate(window_ms, max_buckets)
        self._clock = clock
        self._window_ms = window_ms
        self._max_buckets = max_buckets
        self._enabled = enabled
        self._on_flush = on_flush
        self._logger = get_component_logger("EventAggregator", logger)

        self._buckets: Dict[str, AggregationBucket] = {}
        self._ready: List[TrackingEvent] = []
        self._nonce = itertools.count()
        self._stats = AggregatorStats()

        self._task: Optional[asyncio.Task] = None
        self._running = False

    @staticmethod
    def _validate(window_ms: int, max_buckets: int) -> None:
        if window_ms <= 0:
            raise ConfigurationError(f"window_ms must be positive, got {window_ms}")
        if max_buckets < 1:
            raise ConfigurationError(f"max_buckets must be >= 1, got {max_buckets}")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def __len__(self) -> int:
        """Number of open buckets."""
        return len(self._buckets)

    # ─── Ingestion ───

    def fingerprint(self, event: TrackingEvent) -> str:
        """Key identifying events that count as the same kind of noise."""
        event_type = event.event_type
        if event_type not in AGGREGABLE_EVENT_TYPES:
            return f"{event_type}:#{next(self._nonce)}"

        metadata = event.metadata or {}
        if event_type == "SCROLL":
            context_key = metadata.get("url") or ""
        elif event_type in _POINTER_TYPES:
            context_key = metadata.get("elementId") or metadata.get("elementClass") or ""
        elif event_type in _FIELD_TYPES:
            context_key = metadata.get("fieldName") or ""
        else:
            context_key = ""

        return "|".join((event_type, event.visitor_id, event.session_id, str(context_key)))

    def add(self, event: TrackingEvent) -> bool:
        """Buffer an event.

        Returns:
            False when aggregation is disabled; the caller must then route
            the event around the aggregator.
        """
        if not self._enabled:
            return False

        self._stats.total_received += 1
        occurred_at = event.occurred_at or isoformat(self._clock.now())
        key = self.fingerprint(event)
        bucket = self._buckets.get(key)

        if bucket is not None:
            bucket.count += 1
            bucket.last_occurred_at = occurred_at
            merge_metadata(bucket.merged_metadata, event.metadata or {})
        else:
            self._buckets[key] = AggregationBucket(
                representative=event,
                count=1,
                first_occurred_at=occurred_at,
                last_occurred_at=occurred_at,
                merged_metadata=dict(event.metadata or {}),
            )

        if len(self._buckets) >= self._max_buckets:
            self._logger.warning("aggregator_forced_flush", buckets=len(self._buckets))
            self._deliver(self._drain_buckets(), reason="capacity")

        return True

    # ─── Flushing ───

    def flush(self) -> List[TrackingEvent]:
        """Materialize every open bucket, in creation order, and clear them."""
        events = self._ready + self._drain_buckets()
        self._ready = []
        return events

    def _drain_buckets(self) -> List[TrackingEvent]:
        if not self._buckets:
            return []

        events = [bucket.materialize() for bucket in self._buckets.values()]
        self._buckets = {}

        self._stats.total_emitted += len(events)
        for event in events:
            self._stats.emitted_by_type[event.event_type] = (
                self._stats.emitted_by_type.get(event.event_type, 0) + 1
            )
        self._logger.debug(
            "aggregator_flushed",
            emitted=len(events),
            reduction_percent=round(self._stats.aggregation_ratio, 1),
        )
        return events

    def _deliver(self, events: List[TrackingEvent], reason: str) -> None:
        if not events:
            return
        if self._on_flush is None:
            self._ready.extend(events)
            return
        try:
            self._on_flush(events)
        except Exception as e:
            # Keep the events for the next explicit flush() rather than lose them.
            self._ready.extend(events)
            self._logger.error("aggregator_flush_callback_error", reason=reason, error=str(e))

    # ─── Timer ───

    async def start(self) -> None:
        """Start the periodic flush loop. No-op when already running.

        While disabled only the running flag is set; set_enabled(True)
        starts the timer later.
        """
        if self._running:
            return
        self._running = True
        if self._enabled:
            self._task = asyncio.create_task(self._run_loop())
        self._logger.info("aggregator_started", window_ms=self._window_ms)

    async def stop(self) -> None:
        """Stop the periodic flush loop. Idempotent."""
        self._running = False
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._window_ms / 1000.0)
            except asyncio.CancelledError:
                break
            self._deliver(self._drain_buckets(), reason="timer")

    def _restart_timer(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._running and self._enabled:
            self._task = asyncio.get_running_loop().create_task(self._run_loop())

    # ─── Configuration ───

    def update_config(
        self,
        window_ms: Optional[int] = None,
        max_buckets: Optional[int] = None,
        enabled: Optional[bool] = None,
        on_flush: Optional[FlushCallback] = None,
    ) -> None:
        """Apply a partial configuration change."""
        self._validate(
            window_ms if window_ms is not None else self._window_ms,
            max_buckets if max_buckets is not None else self._max_buckets,
        )
        if on_flush is not None:
            self._on_flush = on_flush
        if max_buckets is not None:
            self._max_buckets = max_buckets
        if enabled is not None and enabled != self._enabled:
            self.set_enabled(enabled)
        if window_ms is not None and window_ms != self._window_ms:
            self._window_ms = window_ms
            if self._running:
                self._restart_timer()
        self._logger.info(
            "aggregator_config_updated",
            window_ms=self._window_ms,
            max_buckets=self._max_buckets,
            enabled=self._enabled,
        )

    def set_enabled(self, enabled: bool) -> None:
        """Toggle aggregation. Disabling flushes open buckets first."""
        if enabled == self._enabled:
            return
        if not enabled:
            self._deliver(self._drain_buckets(), reason="disabled")
            self._enabled = False
            if self._task and not self._task.done():
                self._task.cancel()
            self._task = None
        else:
            self._enabled = True
            if self._running:
                self._restart_timer()
        self._logger.info("aggregator_toggled", enabled=enabled)

    # ─── Housekeeping ───

    def get_stats(self) -> AggregatorStats:
        return AggregatorStats(
            total_received=self._stats.total_received,
            total_emitted=self._stats.total_emitted,
            emitted_by_type=dict(self._stats.emitted_by_type),
        )

    def reset_stats(self) -> None:
        self._stats = AggregatorStats()

    def clear(self) -> None:
        """Discard every buffered event without emitting it."""
        discarded = len(self._buckets) + len(self._ready)
        self._buckets = {}
        self._ready = []
        self._logger.info("aggregator_cleared", discarded=discarded)

    def destroy(self) -> None:
        """Cancel the timer and drop buffers. Idempotent."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._buckets = {}
        self._ready = []


__all__ = [
    "AggregationBucket",
    "AggregatorStats",
    "EventAggregator",
    "FlushCallback",
    "merge_metadata",
]
