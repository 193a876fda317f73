"""Protocols and shared types for trackwire."""

from trackwire.protocols.interfaces import (
    BatchTransportProtocol,
    ClockProtocol,
    LoggerProtocol,
    SocketChannelProtocol,
    SocketHandler,
    StorageProtocol,
    TokenProviderProtocol,
)
from trackwire.protocols.types import (
    BatchPayload,
    ConnectionState,
    ConnectionStatus,
    ConsentStatus,
    PresenceStatus,
    SendResult,
    TokenPair,
    TrackingEvent,
)

__all__ = [
    # Interfaces
    "BatchTransportProtocol",
    "ClockProtocol",
    "LoggerProtocol",
    "SocketChannelProtocol",
    "SocketHandler",
    "StorageProtocol",
    "TokenProviderProtocol",
    # Types
    "BatchPayload",
    "ConnectionState",
    "ConnectionStatus",
    "ConsentStatus",
    "PresenceStatus",
    "SendResult",
    "TokenPair",
    "TrackingEvent",
]
