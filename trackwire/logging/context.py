"""Context propagation for logging.

Binds visitor/session identity into structlog contextvars so every log line
emitted while a batch is being delivered carries it, including lines from
transports and the token lifecycle further down the call stack.

Usage:
    from trackwire.logging.context import tracking_context

    with tracking_context(visitor_id="v-1", session_id="s-1", batch_size=20):
        logger.info("batch_sending")
"""

from contextlib import contextmanager
from typing import Iterator

import structlog


@contextmanager
def tracking_context(visitor_id: str, session_id: str, **extra_context) -> Iterator[None]:
    """Bind tracking identity to all log messages within the context.

    Args:
        visitor_id: Visitor the events belong to
        session_id: Session the events belong to
        **extra_context: Additional context to bind
    """
    tokens = structlog.contextvars.bind_contextvars(
        visitor_id=visitor_id,
        session_id=session_id,
        **extra_context
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


__all__ = ["tracking_context"]
