"""Unit tests for Dispatcher."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from trackwire.dispatcher import Dispatcher
from trackwire.errors import ConfigurationError
from trackwire.pipeline.queue import DurableQueue
from trackwire.protocols import SendResult


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _transport(*results) -> MagicMock:
    transport = MagicMock()
    if results:
        transport.send = AsyncMock(side_effect=list(results))
    else:
        transport.send = AsyncMock(
            side_effect=lambda payload: SendResult.success(accepted=len(payload.events))
        )
    return transport


def _dispatcher(queue, transport, logger, **overrides) -> Dispatcher:
    options = dict(batch_size=2, interval_seconds=0.01, logger=logger)
    options.update(overrides)
    return Dispatcher(queue, transport, "visitor-1", "session-1", **options)


@pytest.fixture
def queue(memory_storage, mock_logger):
    return DurableQueue(memory_storage, persist_every=1, logger=mock_logger)


# =============================================================================
# DISPATCH
# =============================================================================


class TestDispatchOnce:
    async def test_success_removes_sent_batch(self, queue, mock_logger, make_event):
        events = [make_event("CLICK", {"n": i}) for i in range(3)]
        queue.enqueue_many(events)
        transport = _transport()

        removed = await _dispatcher(queue, transport, mock_logger).dispatch_once()

        assert removed == 2
        assert queue.get_batch(10) == events[2:]
        payload = transport.send.await_args.args[0]
        assert payload.events == events[:2]
        assert payload.visitor_id == "visitor-1"
        assert payload.session_id == "session-1"

    async def test_failure_keeps_batch_queued(self, queue, mock_logger, make_event):
        events = [make_event("CLICK", {"n": i}) for i in range(2)]
        queue.enqueue_many(events)
        transport = _transport(SendResult.failure("down", status_code=503))
        dispatcher = _dispatcher(queue, transport, mock_logger)

        assert await dispatcher.dispatch_once() == 0

        assert queue.get_batch(10) == events
        assert dispatcher.get_stats().batches_failed == 1

    async def test_unexpected_transport_exception_keeps_batch(self, queue, mock_logger, make_event):
        queue.enqueue(make_event())
        transport = _transport(RuntimeError("boom"))

        assert await _dispatcher(queue, transport, mock_logger).dispatch_once() == 0
        assert queue.size() == 1

    async def test_empty_queue_sends_nothing(self, queue, mock_logger):
        transport = _transport()

        assert await _dispatcher(queue, transport, mock_logger).dispatch_once() == 0
        transport.send.assert_not_called()

    async def test_partial_acceptance_removes_only_accepted(self, queue, mock_logger, make_event):
        events = [make_event("CLICK", {"n": i}) for i in range(3)]
        queue.enqueue_many(events)
        transport = _transport(SendResult.success(accepted=1))

        await _dispatcher(queue, transport, mock_logger, batch_size=3).dispatch_once()

        assert queue.get_batch(10) == events[1:]

    async def test_evictions_during_send_are_reconciled(self, memory_storage, mock_logger, make_event):
        queue = DurableQueue(memory_storage, max_size=3, logger=mock_logger)
        events = [make_event("CLICK", {"n": i}) for i in range(3)]
        queue.enqueue_many(events)
        newcomer = make_event("CLICK", {"n": 99})

        async def send(payload):
            # A producer overflows the queue while the batch is in flight.
            queue.enqueue(newcomer)
            return SendResult.success(accepted=len(payload.events))

        transport = MagicMock()
        transport.send = AsyncMock(side_effect=send)

        await _dispatcher(queue, transport, mock_logger, batch_size=2).dispatch_once()

        assert queue.get_batch(10) == [events[2], newcomer]


class TestLoop:
    async def test_loop_drains_queue_periodically(self, queue, mock_logger, make_event):
        queue.enqueue_many([make_event("CLICK", {"n": i}) for i in range(4)])
        dispatcher = _dispatcher(queue, _transport(), mock_logger)

        await dispatcher.start()
        await asyncio.sleep(0.1)
        await dispatcher.stop()
        await dispatcher.stop()

        assert queue.is_empty()
        assert dispatcher.get_stats().events_sent == 4

    async def test_flush_stops_on_failure(self, queue, mock_logger, make_event):
        queue.enqueue_many([make_event("CLICK", {"n": i}) for i in range(4)])
        transport = _transport(SendResult.success(accepted=2), SendResult.failure("down"))

        assert await _dispatcher(queue, transport, mock_logger).flush() == 2
        assert queue.size() == 2

    def test_invalid_configuration(self, queue, mock_logger):
        with pytest.raises(ConfigurationError):
            _dispatcher(queue, _transport(), mock_logger, batch_size=0)
        with pytest.raises(ConfigurationError):
            _dispatcher(queue, _transport(), mock_logger, interval_seconds=0)
