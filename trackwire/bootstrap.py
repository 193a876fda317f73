"""Composition root.

create_app_context() builds the AppContext (settings, logging, storage,
identity); create_tracker() wires every component from it. Shared
per-endpoint services (token lifecycle, connection manager) are held in
the context's ServiceRegistry, so two trackers built from one context
share one credential and one socket.

Usage:
    app_context = create_app_context()
    tracker = create_tracker(app_context)
    await tracker.start()
"""

from typing import Optional

from trackwire.auth import TokenClient, TokenLifecycle
from trackwire.connection import ConnectionManager, WebSocketChannel
from trackwire.consent import ConsentGate
from trackwire.context import AppContext, SystemClock
from trackwire.dispatcher import Dispatcher
from trackwire.identity import ClientIdentity, new_session_id
from trackwire.pipeline import DurableQueue, EventAggregator, RateLimiter
from trackwire.protocols import (
    BatchTransportProtocol,
    ClockProtocol,
    ConsentStatus,
    StorageProtocol,
)
from trackwire.settings import Settings
from trackwire.storage import create_storage
from trackwire.tracker import Tracker
from trackwire.transport import HttpBatchTransport, SocketBatchTransport
from trackwire.utils.logging import configure_logging, create_logger


def create_app_context(
    settings: Optional[Settings] = None,
    storage: Optional[StorageProtocol] = None,
    clock: Optional[ClockProtocol] = None,
    session_id: Optional[str] = None,
) -> AppContext:
    """Create the AppContext for one host application.

    Args:
        settings: Settings (loaded from the environment if None)
        storage: Storage backend (built from settings if None)
        clock: Time provider (SystemClock if None)
        session_id: Session identity (a new one if None)
    """
    if settings is None:
        settings = Settings()

    configure_logging(settings.log_level, json_output=settings.log_json)
    logger = create_logger("trackwire")

    if storage is None:
        storage = create_storage(
            settings.storage_dir,
            quota_bytes=settings.storage_quota_bytes,
            logger=logger,
        )

    identity = ClientIdentity(storage, logger=logger)
    app_context = AppContext(
        settings=settings,
        logger=logger,
        storage=storage,
        clock=clock or SystemClock(),
        visitor_id=identity.get_visitor_id(),
        session_id=session_id or new_session_id(),
    )
    app_context.registry.get_or_create("identity", "local", lambda: identity)
    settings.log_config(logger)
    return app_context


def get_token_lifecycle(app_context: AppContext) -> TokenLifecycle:
    """Token lifecycle for the configured API endpoint (one per endpoint)."""
    settings = app_context.settings
    identity: ClientIdentity = app_context.registry.get_or_create(
        "identity", "local", lambda: ClientIdentity(app_context.storage, logger=app_context.logger)
    )

    def build() -> TokenLifecycle:
        return TokenLifecycle(
            client=TokenClient(
                settings.api_endpoint,
                timeout=settings.token_request_timeout,
                logger=app_context.get_bound_logger("TokenClient"),
            ),
            client_fingerprint=identity.get_client_fingerprint,
            storage=app_context.storage,
            clock=app_context.clock,
            safety_margin_seconds=settings.token_safety_margin_seconds,
            max_attempts=settings.token_max_attempts,
            retry_delay_seconds=settings.token_retry_delay_seconds,
            logger=app_context.get_bound_logger("TokenLifecycle"),
        )

    return app_context.registry.get_or_create(
        "tokens", settings.api_endpoint, build, alias="tokens"
    )


def get_connection_manager(app_context: AppContext) -> ConnectionManager:
    """Connection manager for the configured socket endpoint (one per endpoint)."""
    settings = app_context.settings
    tokens = get_token_lifecycle(app_context)
    channel_logger = app_context.get_bound_logger("WebSocketChannel")

    def build() -> ConnectionManager:
        return ConnectionManager(
            url=settings.ws_endpoint,
            tokens=tokens,
            channel_factory=lambda: WebSocketChannel(logger=channel_logger),
            clock=app_context.clock,
            auto_reconnect=settings.auto_reconnect,
            token_check_interval_seconds=settings.token_check_interval_seconds,
            auth_error_delay_seconds=settings.auth_error_delay_seconds,
            inactivity_threshold_seconds=settings.inactivity_threshold_seconds,
            presence_min_interval_seconds=settings.presence_min_interval_seconds,
            logger=app_context.get_bound_logger("ConnectionManager"),
        )

    return app_context.registry.get_or_create(
        "connection", settings.ws_endpoint, build, alias="socket"
    )


def create_tracker(app_context: AppContext) -> Tracker:
    """Wire a Tracker from the context's settings."""
    settings = app_context.settings
    clock = app_context.clock

    rate_limiter = RateLimiter(
        clock,
        rules=settings.throttle_rules,
        enabled=settings.throttle_enabled,
        logger=app_context.get_bound_logger("RateLimiter"),
    )
    queue = DurableQueue(
        app_context.storage,
        max_size=settings.queue_max_size,
        persist_every=settings.queue_persist_every,
        persist_enabled=True,
        logger=app_context.get_bound_logger("DurableQueue"),
    )
    aggregator = EventAggregator(
        clock,
        window_ms=settings.aggregation_window_ms,
        max_buckets=settings.aggregation_max_buckets,
        enabled=settings.aggregation_enabled,
        on_flush=queue.enqueue_many,
        logger=app_context.get_bound_logger("EventAggregator"),
    )

    connection: Optional[ConnectionManager] = None
    transport: BatchTransportProtocol
    if settings.transport == "socket":
        connection = get_connection_manager(app_context)
        transport = SocketBatchTransport(
            connection,
            max_retries=settings.send_max_retries,
            retry_delay_seconds=settings.send_retry_delay_seconds,
            logger=app_context.get_bound_logger("SocketBatchTransport"),
        )
    else:
        transport = HttpBatchTransport(
            settings.api_endpoint,
            tokens=get_token_lifecycle(app_context),
            timeout=settings.token_request_timeout,
            max_retries=settings.send_max_retries,
            retry_delay_seconds=settings.send_retry_delay_seconds,
            logger=app_context.get_bound_logger("HttpBatchTransport"),
        )

    dispatcher = Dispatcher(
        queue,
        transport,
        visitor_id=app_context.visitor_id,
        session_id=app_context.session_id,
        batch_size=settings.batch_size,
        interval_seconds=settings.dispatch_interval_seconds,
        logger=app_context.get_bound_logger("Dispatcher"),
    )
    consent = ConsentGate(
        app_context.storage,
        clock,
        default_status=ConsentStatus(settings.consent_default_status),
        wait_for_consent=settings.consent_wait_for_consent,
        logger=app_context.get_bound_logger("ConsentGate"),
    )

    return Tracker(
        visitor_id=app_context.visitor_id,
        session_id=app_context.session_id,
        clock=clock,
        rate_limiter=rate_limiter,
        aggregator=aggregator,
        queue=queue,
        dispatcher=dispatcher,
        connection=connection,
        consent=consent,
        logger=app_context.get_bound_logger("Tracker"),
    )


__all__ = [
    "create_app_context",
    "create_tracker",
    "get_connection_manager",
    "get_token_lifecycle",
]
