"""Dispatcher - moves batches from the DurableQueue to a transport.

Each cycle peeks up to batch_size of the oldest entries, sends them and
removes them from the queue only once the transport confirms acceptance.
A failed send leaves the batch queued for the next cycle.

Architecture:
    DurableQueue.get_batch(n)
           | BatchPayload(visitor_id, session_id, events)
    BatchTransport.send()  (socket or HTTP)
           | SendResult.ok
    DurableQueue.dequeue(sent)

Usage:
    dispatcher = Dispatcher(queue, transport, visitor_id, session_id)
    await dispatcher.start()
    ...
    await dispatcher.stop()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from trackwire.config.constants import DEFAULT_BATCH_SIZE, DEFAULT_DISPATCH_INTERVAL_SECONDS
from trackwire.errors import ConfigurationError
from trackwire.logging import tracking_context
from trackwire.pipeline.queue import DurableQueue
from trackwire.protocols import BatchPayload, BatchTransportProtocol, LoggerProtocol
from trackwire.utils.logging import get_component_logger


@dataclass
class DispatcherStats:
    batches_sent: int = 0
    batches_failed: int = 0
    events_sent: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batches_sent": self.batches_sent,
            "batches_failed": self.batches_failed,
            "events_sent": self.events_sent,
        }


class Dispatcher:
    """Periodic queue-to-transport pump."""

    def __init__(
        self,
        queue: DurableQueue,
        transport: BatchTransportProtocol,
        visitor_id: str,
        session_id: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        interval_seconds: float = DEFAULT_DISPATCH_INTERVAL_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ) -> None:
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {batch_size}")
        if interval_seconds <= 0:
            raise ConfigurationError(f"interval_seconds must be positive, got {interval_seconds}")
        self._queue = queue
        self._transport = transport
        self._visitor_id = visitor_id
        self._session_id = session_id
        self._batch_size = batch_size
        self._interval = interval_seconds
        self._logger = get_component_logger("Dispatcher", logger)

        self._lock = asyncio.Lock()
        self._stats = DispatcherStats()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> DispatcherStats:
        return DispatcherStats(**self._stats.to_dict())

    async def start(self) -> None:
        """Start the periodic dispatch loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info("dispatcher_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the periodic dispatch loop. Idempotent."""
        self._running = False
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._logger.info("dispatcher_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            await self.dispatch_once()

    async def dispatch_once(self) -> int:
        """Send one batch. Returns the number of events removed from the queue.

        Never raises for transport failures; a failed batch stays queued.
        """
        async with self._lock:
            batch = self._queue.get_batch(self._batch_size)
            if not batch:
                return 0

            evicted_before = self._queue.evicted_count
            payload = BatchPayload(
                visitor_id=self._visitor_id,
                session_id=self._session_id,
                events=batch,
            )

            with tracking_context(self._visitor_id, self._session_id):
                try:
                    result = await self._transport.send(payload)
                except Exception as e:
                    self._logger.error("dispatch_transport_error", error=str(e), events=len(batch))
                    self._stats.batches_failed += 1
                    return 0

                if not result.ok:
                    self._stats.batches_failed += 1
                    self._logger.warning(
                        "dispatch_failed",
                        events=len(batch),
                        status_code=result.status_code,
                        error=result.error,
                    )
                    return 0

                sent = min(result.accepted, len(batch))
                # Entries evicted from the head while the send was in flight
                # were part of this batch and are already gone.
                evicted_during = self._queue.evicted_count - evicted_before
                removed = self._queue.dequeue(max(0, sent - evicted_during))

                self._stats.batches_sent += 1
                self._stats.events_sent += sent
                self._logger.info("dispatch_succeeded", events=sent, remaining=self._queue.size())
                return removed

    async def flush(self) -> int:
        """Dispatch until the queue is empty or a send fails."""
        total = 0
        while not self._queue.is_empty():
            removed = await self.dispatch_once()
            if removed == 0:
                break
            total += removed
        return total


__all__ = ["Dispatcher", "DispatcherStats"]
