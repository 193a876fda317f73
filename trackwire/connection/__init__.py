"""Connection resilience: socket channel, presence, lifecycle manager."""

from trackwire.connection.channel import AUTH_CLOSE_CODE, WebSocketChannel
from trackwire.connection.manager import ChannelFactory, ConnectionManager
from trackwire.connection.presence import ActivityMonitor, PresenceSender

__all__ = [
    "AUTH_CLOSE_CODE",
    "ActivityMonitor",
    "ChannelFactory",
    "ConnectionManager",
    "PresenceSender",
    "WebSocketChannel",
]
