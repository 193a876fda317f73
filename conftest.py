"""Root conftest.py for trackwire tests.

This file MUST be at the repository root for fixtures to be discovered
when running tests from any subdirectory.

Provides shared fixtures used across all test modules:
- mock_logger: MagicMock satisfying LoggerProtocol
- fake_clock: manually advanced ClockProtocol
- memory_storage: InMemoryStorage without a quota
"""

import pytest
from unittest.mock import MagicMock

from tests.fixtures.mocks import FakeChannelFactory, FakeClock, FakeTokenProvider
from trackwire.protocols import TrackingEvent
from trackwire.storage import InMemoryStorage


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Injected into every component under test in place of the structlog
    logger.
    """
    logger = MagicMock()
    logger.info = MagicMock()
    logger.debug = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.exception = MagicMock()
    logger.bind = MagicMock(return_value=logger)
    return logger


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def memory_storage(mock_logger):
    return InMemoryStorage(logger=mock_logger)


@pytest.fixture
def channel_factory():
    return FakeChannelFactory()


@pytest.fixture
def token_provider():
    return FakeTokenProvider()


@pytest.fixture
def make_event():
    """Factory for TrackingEvent instances with sensible defaults."""

    def _make(
        event_type: str = "PAGE_VIEW",
        metadata=None,
        occurred_at: str = "2024-01-01T00:00:00.000Z",
        visitor_id: str = "visitor-1",
        session_id: str = "session-1",
    ) -> TrackingEvent:
        return TrackingEvent(
            visitor_id=visitor_id,
            session_id=session_id,
            event_type=event_type,
            metadata=dict(metadata or {}),
            occurred_at=occurred_at,
        )

    return _make
