"""Event-reduction pipeline: rate limiting, aggregation, durable queueing."""

from trackwire.pipeline.aggregator import (
    AggregationBucket,
    AggregatorStats,
    EventAggregator,
    FlushCallback,
    merge_metadata,
)
from trackwire.pipeline.queue import DurableQueue, QueueStats
from trackwire.pipeline.rate_limiter import RateLimiter, RateLimiterStats

__all__ = [
    "AggregationBucket",
    "AggregatorStats",
    "DurableQueue",
    "EventAggregator",
    "FlushCallback",
    "QueueStats",
    "RateLimiter",
    "RateLimiterStats",
    "merge_metadata",
]
