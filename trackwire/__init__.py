"""Trackwire - client-side telemetry delivery pipeline.

This package captures behavioral events, reduces their volume, queues them
durably across restarts, and delivers them over a single authenticated,
reconnecting socket connection whose credentials are renewed in place.

Sub-packages:
- pipeline/    - RateLimiter, EventAggregator, DurableQueue
- auth/        - Token endpoints client, TokenLifecycle (single-flight renewal)
- connection/  - WebSocketChannel, presence tracking, ConnectionManager
- protocols/   - Structural interfaces and data types
- config/      - Static constants (storage keys, default rules)
- utils/       - structlog-backed logging helpers

Top-level modules:
- bootstrap    - AppContext creation, composition root
- tracker      - Tracker facade (the ingestion surface)
- dispatcher   - Queue -> transport batch delivery
- transport    - Socket and HTTP batch transports
- settings     - Environment-driven Settings (pydantic-settings)

Architecture:
    producers -> Tracker -> RateLimiter -> EventAggregator -> DurableQueue
                                                                  |
                                                             Dispatcher
                                                                  |
                           TokenLifecycle <- ConnectionManager <- transport

Usage:
    from trackwire.bootstrap import create_app_context, create_tracker

    app_context = create_app_context()
    tracker = create_tracker(app_context)
    await tracker.start()
    tracker.track("PAGE_VIEW", {"url": "https://example.com/"})
    await tracker.shutdown()
"""

__version__ = "1.0.0"
