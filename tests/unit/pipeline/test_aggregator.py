"""Unit tests for EventAggregator and metadata merging."""

import asyncio

import pytest

from trackwire.errors import ConfigurationError
from trackwire.pipeline.aggregator import EventAggregator, merge_metadata


def _ts(second: int) -> str:
    return f"2024-01-01T00:00:{second:02d}.000Z"


# =============================================================================
# FINGERPRINTING AND MERGING
# =============================================================================


class TestAggregation:
    """add() / flush() behavior."""

    def test_same_scroll_fingerprint_merges_into_one_event(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        for second in range(5):
            aggregator.add(make_event("SCROLL", {"url": "/home", "depth": second * 10}, _ts(second)))

        flushed = aggregator.flush()

        assert len(flushed) == 1
        event = flushed[0]
        assert event.metadata["aggregatedCount"] == 5
        assert event.metadata["firstOccurredAt"] == _ts(0)
        assert event.metadata["lastOccurredAt"] == _ts(4)
        assert event.occurred_at == _ts(4)

    def test_non_aggregable_events_are_never_merged(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        for _ in range(5):
            aggregator.add(make_event("FORM_SUBMIT", {"form": "signup"}))

        flushed = aggregator.flush()

        assert len(flushed) == 5
        assert all(e.metadata["aggregatedCount"] == 1 for e in flushed)

    def test_different_context_keys_use_separate_buckets(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        aggregator.add(make_event("SCROLL", {"url": "/a"}))
        aggregator.add(make_event("SCROLL", {"url": "/b"}))
        aggregator.add(make_event("HOVER", {"elementId": "buy"}))
        aggregator.add(make_event("HOVER", {"elementId": "buy"}))
        aggregator.add(make_event("FOCUS", {"fieldName": "email"}))
        aggregator.add(make_event("SCROLL", {"url": "/a"}, session_id="session-2"))

        counts = [e.metadata["aggregatedCount"] for e in aggregator.flush()]

        assert counts == [1, 1, 2, 1, 1]

    def test_pointer_events_fall_back_to_element_class(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        aggregator.add(make_event("MOUSE_MOVE", {"elementClass": "card"}))
        aggregator.add(make_event("MOUSE_MOVE", {"elementClass": "card"}))
        aggregator.add(make_event("MOUSE_MOVE", {"elementClass": "nav"}))

        assert len(aggregator.flush()) == 2

    def test_resize_has_no_context_key(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        aggregator.add(make_event("RESIZE", {"width": 800}))
        aggregator.add(make_event("RESIZE", {"width": 1024}))

        flushed = aggregator.flush()
        assert len(flushed) == 1
        assert flushed[0].metadata["width"] == 1024

    def test_flush_order_follows_bucket_creation(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        aggregator.add(make_event("SCROLL", {"url": "/a"}))
        aggregator.add(make_event("CLICK"))
        aggregator.add(make_event("HOVER", {"elementId": "x"}))
        aggregator.add(make_event("SCROLL", {"url": "/a"}))

        assert [e.event_type for e in aggregator.flush()] == ["SCROLL", "CLICK", "HOVER"]

    def test_flush_clears_buckets(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)
        aggregator.add(make_event("SCROLL", {"url": "/a"}))

        aggregator.flush()

        assert len(aggregator) == 0
        assert aggregator.flush() == []

    def test_missing_timestamp_uses_clock(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)
        aggregator.add(make_event("CLICK", occurred_at=""))

        event = aggregator.flush()[0]

        assert event.occurred_at.endswith("Z")
        assert event.metadata["firstOccurredAt"] == event.occurred_at


class TestMergeMetadata:
    """merge_metadata() field rules."""

    def test_numbers_keep_running_min_max_and_latest(self):
        merged = {"depth": 50}
        for value in (10, 90, 40):
            merge_metadata(merged, {"depth": value})

        assert merged == {"depth": 40, "depthMin": 10, "depthMax": 90}

    def test_lists_union_without_duplicates(self):
        merged = {"tags": ["a", "b"]}
        merge_metadata(merged, {"tags": ["b", "c"]})

        assert merged["tags"] == ["a", "b", "c"]

    def test_other_values_are_overwritten(self):
        merged = {"label": "old", "flag": True}
        merge_metadata(merged, {"label": "new", "flag": False, "extra": 1})

        assert merged == {"label": "new", "flag": False, "extra": 1}


# =============================================================================
# FORCED AND TIMED FLUSH
# =============================================================================


class TestFlushTriggers:
    """Bucket cap and window timer."""

    def test_bucket_cap_forces_flush_to_callback(self, fake_clock, mock_logger, make_event):
        received = []
        aggregator = EventAggregator(
            fake_clock, max_buckets=3, on_flush=received.extend, logger=mock_logger
        )

        for _ in range(3):
            aggregator.add(make_event("CLICK"))

        assert len(received) == 3
        assert len(aggregator) == 0

    def test_forced_flush_without_callback_is_held_for_flush(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, max_buckets=2, logger=mock_logger)

        for _ in range(3):
            aggregator.add(make_event("CLICK"))

        assert len(aggregator.flush()) == 3

    def test_failing_callback_keeps_events(self, fake_clock, mock_logger, make_event):
        def explode(events):
            raise RuntimeError("sink down")

        aggregator = EventAggregator(fake_clock, max_buckets=1, on_flush=explode, logger=mock_logger)
        aggregator.add(make_event("CLICK"))

        assert len(aggregator.flush()) == 1
        mock_logger.error.assert_called()

    async def test_timer_flushes_to_callback(self, fake_clock, mock_logger, make_event):
        received = []
        aggregator = EventAggregator(
            fake_clock, window_ms=20, on_flush=received.extend, logger=mock_logger
        )
        await aggregator.start()
        try:
            aggregator.add(make_event("SCROLL", {"url": "/a"}))
            aggregator.add(make_event("SCROLL", {"url": "/a"}))
            await asyncio.sleep(0.1)
        finally:
            await aggregator.stop()

        assert len(received) == 1
        assert received[0].metadata["aggregatedCount"] == 2

    async def test_stop_and_destroy_are_idempotent(self, fake_clock, mock_logger):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)
        await aggregator.start()

        await aggregator.stop()
        await aggregator.stop()
        aggregator.destroy()
        aggregator.destroy()

    async def test_enabling_after_disabled_start_starts_timer(
        self, fake_clock, mock_logger, make_event
    ):
        received = []
        aggregator = EventAggregator(
            fake_clock, window_ms=20, enabled=False, on_flush=received.extend, logger=mock_logger
        )
        await aggregator.start()
        try:
            aggregator.set_enabled(True)
            aggregator.add(make_event("SCROLL", {"url": "/a"}))
            await asyncio.sleep(0.1)
        finally:
            await aggregator.stop()

        assert len(received) == 1
        assert len(aggregator) == 0


# =============================================================================
# CONFIGURATION
# =============================================================================


class TestConfiguration:
    """Enable/disable and config updates."""

    def test_disabled_aggregator_rejects_events(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, enabled=False, logger=mock_logger)

        assert aggregator.add(make_event("SCROLL", {"url": "/a"})) is False
        assert aggregator.flush() == []

    def test_disabling_flushes_open_buckets(self, fake_clock, mock_logger, make_event):
        received = []
        aggregator = EventAggregator(fake_clock, on_flush=received.extend, logger=mock_logger)
        aggregator.add(make_event("SCROLL", {"url": "/a"}))
        aggregator.add(make_event("CLICK"))

        aggregator.set_enabled(False)

        assert len(received) == 2
        assert not aggregator.enabled

    def test_update_config_validates(self, fake_clock, mock_logger):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)

        with pytest.raises(ConfigurationError):
            aggregator.update_config(window_ms=0)
        with pytest.raises(ConfigurationError):
            EventAggregator(fake_clock, max_buckets=0, logger=mock_logger)

    def test_update_config_applies_cap(self, fake_clock, mock_logger, make_event):
        received = []
        aggregator = EventAggregator(fake_clock, on_flush=received.extend, logger=mock_logger)
        aggregator.update_config(max_buckets=2)

        aggregator.add(make_event("CLICK"))
        aggregator.add(make_event("CLICK"))

        assert len(received) == 2

    def test_stats_track_reduction(self, fake_clock, mock_logger, make_event):
        aggregator = EventAggregator(fake_clock, logger=mock_logger)
        for _ in range(4):
            aggregator.add(make_event("SCROLL", {"url": "/a"}))
        aggregator.flush()

        stats = aggregator.get_stats()
        assert stats.total_received == 4
        assert stats.total_emitted == 1
        assert stats.aggregation_ratio == pytest.approx(75.0)
        assert stats.emitted_by_type == {"SCROLL": 1}

        aggregator.reset_stats()
        assert aggregator.get_stats().total_received == 0

    def test_clear_discards_without_emitting(self, fake_clock, mock_logger, make_event):
        received = []
        aggregator = EventAggregator(fake_clock, on_flush=received.extend, logger=mock_logger)
        aggregator.add(make_event("CLICK"))

        aggregator.clear()

        assert aggregator.flush() == []
        assert received == []
