"""Tracker - the ingestion surface exposed to producers.

Producers (UI components, behavioral detectors) call track() or ingest();
presentation collaborators read status(). Everything behind it is wired
by trackwire.bootstrap.create_tracker().

Ingestion path:
    consent -> RateLimiter.should_allow -> EventAggregator.add
                                           (disabled: DurableQueue.enqueue)
"""

from typing import Any, Dict, Mapping, Optional

from trackwire.connection.manager import ConnectionManager
from trackwire.consent import ConsentGate
from trackwire.context import isoformat
from trackwire.dispatcher import Dispatcher
from trackwire.errors import StorageError
from trackwire.pipeline import DurableQueue, EventAggregator, RateLimiter
from trackwire.protocols import ClockProtocol, ConsentStatus, LoggerProtocol, TrackingEvent
from trackwire.utils.logging import get_component_logger


class Tracker:
    """Facade over the event pipeline and the connection layer."""

    def __init__(
        self,
        visitor_id: str,
        session_id: str,
        clock: ClockProtocol,
        rate_limiter: RateLimiter,
        aggregator: EventAggregator,
        queue: DurableQueue,
        dispatcher: Dispatcher,
        connection: Optional[ConnectionManager] = None,
        consent: Optional[ConsentGate] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._visitor_id = visitor_id
        self._session_id = session_id
        self._clock = clock
        self._rate_limiter = rate_limiter
        self._aggregator = aggregator
        self._queue = queue
        self._dispatcher = dispatcher
        self._connection = connection
        self._consent = consent
        self._logger = get_component_logger("Tracker", logger)
        self._started = False
        self._unsubscribe_consent = consent.subscribe(self._on_consent_change) if consent else None

    # ─── Components ───

    @property
    def visitor_id(self) -> str:
        return self._visitor_id

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def aggregator(self) -> EventAggregator:
        return self._aggregator

    @property
    def queue(self) -> DurableQueue:
        return self._queue

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def connection(self) -> Optional[ConnectionManager]:
        return self._connection

    @property
    def consent(self) -> Optional[ConsentGate]:
        return self._consent

    # ─── Ingestion ───

    def is_tracking_allowed(self) -> bool:
        return self._consent is None or self._consent.is_tracking_allowed()

    def track(self, event_type: str, metadata: Optional[Mapping[str, Any]] = None) -> bool:
        """Build an event for the current visitor/session and ingest it."""
        event = TrackingEvent(
            visitor_id=self._visitor_id,
            session_id=self._session_id,
            event_type=event_type,
            metadata=dict(metadata or {}),
            occurred_at=isoformat(self._clock.now()),
        )
        return self.ingest(event)

    def ingest(self, event: TrackingEvent) -> bool:
        """Push a producer-built event through the pipeline.

        Returns:
            True when the event entered the pipeline; False when consent
            blocks tracking or the rate limiter throttled it.
        """
        if not self.is_tracking_allowed():
            return False
        if not self._rate_limiter.should_allow(event.event_type):
            return False
        if not self._aggregator.add(event):
            self._queue.enqueue(event)
        return True

    # ─── Host signals ───

    def record_activity(self) -> None:
        if self._connection is not None:
            self._connection.record_activity()

    async def handle_visibility_change(self, visible: bool) -> None:
        if self._connection is not None:
            await self._connection.handle_visibility_change(visible)

    # ─── Lifecycle ───

    async def start(self) -> None:
        """Start the flush timer, the connection and the dispatch loop."""
        if self._started:
            return
        self._started = True
        await self._aggregator.start()
        if self._connection is not None:
            await self._connection.start()
        await self._dispatcher.start()
        self._logger.info("tracker_started", queued=self._queue.size())

    async def shutdown(self) -> None:
        """Flush buffered events into the queue, try a final delivery, close.

        Whatever is not delivered stays in the snapshot for the next run.
        Idempotent.
        """
        await self._dispatcher.stop()
        await self._aggregator.stop()

        pending = self._aggregator.flush()
        if pending:
            self._queue.enqueue_many(pending)

        if self._connection is None or self._connection.is_connected:
            await self._dispatcher.flush()

        try:
            self._queue.save_snapshot()
        except StorageError as e:
            self._logger.error("tracker_final_snapshot_failed", error=str(e))

        if self._connection is not None:
            await self._connection.shutdown()
        self._aggregator.destroy()
        if self._unsubscribe_consent is not None:
            self._unsubscribe_consent()
            self._unsubscribe_consent = None
        self._started = False
        self._logger.info("tracker_shutdown", queued=self._queue.size())

    def status(self) -> Dict[str, Any]:
        """Snapshot for presentation collaborators."""
        connection: Optional[Dict[str, Any]] = None
        if self._connection is not None:
            connection = {
                "status": self._connection.status.value,
                "presence": self._connection.presence.value,
                **self._connection.get_state().to_dict(),
            }
        return {
            "visitor_id": self._visitor_id,
            "session_id": self._session_id,
            "tracking_allowed": self.is_tracking_allowed(),
            "connection": connection,
            "queue": self._queue.get_stats().to_dict(),
            "rate_limiter": self._rate_limiter.get_stats().to_dict(),
            "aggregator": self._aggregator.get_stats().to_dict(),
            "dispatcher": self._dispatcher.get_stats().to_dict(),
        }

    def _on_consent_change(self, status: ConsentStatus) -> None:
        if status is ConsentStatus.DENIED:
            # Nothing collected before the denial may leave the client.
            self._aggregator.clear()
            self._queue.clear()
            self._logger.info("tracker_buffers_discarded", reason="consent_denied")


__all__ = ["Tracker"]
