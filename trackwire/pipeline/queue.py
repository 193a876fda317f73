"""DurableQueue - bounded FIFO of tracking events with snapshot persistence.

The in-memory deque is the source of truth during a run. It is mirrored
to a single storage slot as a JSON array: every persist_every-th enqueue,
and after every dequeue. On construction the last snapshot is hydrated,
keeping only structurally valid records.

Overflow evicts the oldest entry; the newest event is never rejected.
"""

import itertools
import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

from trackwire.config.constants import (
    DEFAULT_QUEUE_MAX_SIZE,
    DEFAULT_QUEUE_PERSIST_EVERY,
    QUEUE_STORAGE_KEY,
)
from trackwire.errors import ConfigurationError, StorageError, StorageQuotaExceededError
from trackwire.protocols import LoggerProtocol, StorageProtocol, TrackingEvent
from trackwire.utils.logging import get_component_logger


@dataclass
class QueueStats:
    size: int
    max_size: int
    persist_enabled: bool
    evicted: int = 0

    @property
    def utilization_percent(self) -> float:
        return (self.size / self.max_size) * 100 if self.max_size else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "max_size": self.max_size,
            "utilization_percent": round(self.utilization_percent, 2),
            "persist_enabled": self.persist_enabled,
            "evicted": self.evicted,
        }


class DurableQueue:
    """Bounded FIFO event queue mirrored to storage."""

    def __init__(
        self,
        storage: StorageProtocol,
        max_size: int = DEFAULT_QUEUE_MAX_SIZE,
        persist_every: int = DEFAULT_QUEUE_PERSIST_EVERY,
        persist_enabled: bool = True,
        storage_key: str = QUEUE_STORAGE_KEY,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Initialize the queue and hydrate from the last snapshot.

        Args:
            storage: Snapshot storage
            max_size: Capacity; the oldest entry is evicted beyond it
            persist_every: Snapshot after this many enqueues
            persist_enabled: When False nothing is read from or written to storage
            storage_key: Storage slot for the snapshot
            logger: Optional logger
        """
        if max_size < 1:
            raise ConfigurationError(f"max_size must be >= 1, got {max_size}")
        if persist_every < 1:
            raise ConfigurationError(f"persist_every must be >= 1, got {persist_every}")

        self._storage = storage
        self._max_size = max_size
        self._persist_every = persist_every
        self._persist_enabled = persist_enabled
        self._storage_key = storage_key
        self._logger = get_component_logger("DurableQueue", logger)

        self._queue: Deque[TrackingEvent] = deque()
        self._enqueues_since_persist = 0
        self._evicted_count = 0
        self.last_persist_error: Optional[StorageError] = None

        if self._persist_enabled:
            self._hydrate()

    # ─── Properties ───

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def persist_enabled(self) -> bool:
        return self._persist_enabled

    @property
    def evicted_count(self) -> int:
        """Total entries removed from the head by overflow or quota recovery."""
        return self._evicted_count

    def size(self) -> int:
        return len(self._queue)

    def is_empty(self) -> bool:
        return not self._queue

    def __len__(self) -> int:
        return len(self._queue)

    # ─── Queue operations ───

    def enqueue(self, event: TrackingEvent) -> bool:
        """Append an event, evicting the oldest entry when full.

        Always accepts. Persistence failures are logged and recorded in
        last_persist_error; they never propagate.
        """
        if len(self._queue) >= self._max_size:
            self._queue.popleft()
            self._evicted_count += 1
            self._logger.warning("queue_overflow_evicted", max_size=self._max_size)

        self._queue.append(event)
        self._enqueues_since_persist += 1

        if self._enqueues_since_persist >= self._persist_every:
            self._persist_quietly()
        return True

    def enqueue_many(self, events: List[TrackingEvent]) -> int:
        for event in events:
            self.enqueue(event)
        return len(events)

    def get_batch(self, n: int) -> List[TrackingEvent]:
        """Peek at up to n of the oldest entries without removing them."""
        if n <= 0:
            return []
        return list(itertools.islice(self._queue, n))

    def dequeue(self, n: int) -> int:
        """Remove the n oldest entries and persist the result.

        Only call after the batch those entries represent has been accepted
        downstream. Returns the number of entries actually removed.
        """
        removed = 0
        while removed < n and self._queue:
            self._queue.popleft()
            removed += 1
        if removed:
            self._logger.debug("queue_dequeued", count=removed, remaining=len(self._queue))
        self._persist_quietly()
        return removed

    def clear(self) -> None:
        """Drop every entry and the snapshot."""
        self._queue.clear()
        self._enqueues_since_persist = 0
        if self._persist_enabled:
            try:
                self._storage.remove_item(self._storage_key)
            except Exception as e:
                self._logger.warning("queue_snapshot_remove_failed", error=str(e))
        self._logger.info("queue_cleared")

    def get_stats(self) -> QueueStats:
        return QueueStats(
            size=len(self._queue),
            max_size=self._max_size,
            persist_enabled=self._persist_enabled,
            evicted=self._evicted_count,
        )

    # ─── Persistence ───

    def save_snapshot(self) -> None:
        """Write the whole queue to storage.

        On a quota error the oldest half of the queue is dropped and the
        write retried once.

        Raises:
            StorageError: If the retry also fails, or storage fails otherwise.
                The in-memory queue stays usable.
        """
        if not self._persist_enabled:
            return
        try:
            self._write()
        except StorageQuotaExceededError as e:
            drop = len(self._queue) // 2
            for _ in range(drop):
                self._queue.popleft()
            self._evicted_count += drop
            self._logger.warning(
                "queue_quota_exceeded_halved",
                dropped=drop,
                remaining=len(self._queue),
                quota=e.quota,
            )
            self._write()
        self._enqueues_since_persist = 0
        self.last_persist_error = None

    def _write(self) -> None:
        payload = json.dumps([event.to_dict() for event in self._queue])
        try:
            self._storage.set_item(self._storage_key, payload)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(self._storage_key, str(e)) from e

    def _persist_quietly(self) -> None:
        try:
            self.save_snapshot()
        except StorageError as e:
            self.last_persist_error = e
            self._logger.error("queue_persist_failed", error=str(e), size=len(self._queue))

    def _hydrate(self) -> None:
        try:
            raw = self._storage.get_item(self._storage_key)
        except Exception as e:
            self._logger.warning("queue_snapshot_read_failed", error=str(e))
            return
        if not raw:
            return

        try:
            records = json.loads(raw)
        except (TypeError, ValueError):
            self._logger.warning("queue_snapshot_malformed")
            return
        if not isinstance(records, list):
            self._logger.warning("queue_snapshot_malformed", kind=type(records).__name__)
            return

        valid = [TrackingEvent.from_dict(r) for r in records if TrackingEvent.is_valid_record(r)]
        # Keep the newest entries if the snapshot outgrew a smaller capacity.
        for event in valid[-self._max_size:]:
            self._queue.append(event)

        discarded = len(records) - len(valid)
        self._logger.info("queue_hydrated", restored=len(self._queue), discarded=discarded)


__all__ = ["DurableQueue", "QueueStats"]
