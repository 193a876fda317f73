"""Protocol definitions - interfaces for dependency injection.

These are typing.Protocol classes for static type checking. Concrete
implementations live in trackwire.storage, trackwire.connection,
trackwire.transport and trackwire.auth.
"""

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from trackwire.protocols.types import BatchPayload, SendResult


# =============================================================================
# LOGGING
# =============================================================================

@runtime_checkable
class LoggerProtocol(Protocol):
    """Structured logging interface."""

    def info(self, message: str, **kwargs: Any) -> None: ...
    def debug(self, message: str, **kwargs: Any) -> None: ...
    def warning(self, message: str, **kwargs: Any) -> None: ...
    def error(self, message: str, **kwargs: Any) -> None: ...
    def bind(self, **kwargs: Any) -> "LoggerProtocol": ...


# =============================================================================
# TIME
# =============================================================================

@runtime_checkable
class ClockProtocol(Protocol):
    """Time provider. Replaced with a fake clock in tests."""

    def now(self) -> datetime: ...
    def time(self) -> float: ...


# =============================================================================
# STORAGE
# =============================================================================

@runtime_checkable
class StorageProtocol(Protocol):
    """Key/value snapshot storage (the browser's localStorage equivalent).

    Values are strings; writers replace a key wholesale. get_item returns
    None for a missing key. set_item may raise StorageQuotaExceededError.
    """

    def get_item(self, key: str) -> Optional[str]: ...
    def set_item(self, key: str, value: str) -> None: ...
    def remove_item(self, key: str) -> None: ...


# =============================================================================
# SOCKET
# =============================================================================

SocketHandler = Callable[[Any], Optional[Awaitable[None]]]


@runtime_checkable
class SocketChannelProtocol(Protocol):
    """A single socket connection to the tracking server.

    Lifecycle events are delivered through on(): "connect", "disconnect",
    "auth_error" plus any server-emitted event name. The channel never
    reconnects on its own.
    """

    @property
    def connected(self) -> bool: ...

    async def connect(self, url: str, token: str) -> None: ...
    async def close(self) -> None: ...
    async def emit(self, event: str, data: Any) -> None: ...
    def on(self, event: str, handler: SocketHandler) -> None: ...


# =============================================================================
# TOKENS
# =============================================================================

@runtime_checkable
class TokenProviderProtocol(Protocol):
    """Narrow interface the ConnectionManager sees of the token lifecycle."""

    async def get_valid_access_token(self) -> Optional[str]: ...
    async def force_renew(self) -> Optional[str]: ...
    def is_request_in_progress(self) -> bool: ...
    def is_near_expiration(self, token: Optional[str] = None) -> bool: ...


# =============================================================================
# BATCH TRANSPORT
# =============================================================================

@runtime_checkable
class BatchTransportProtocol(Protocol):
    """Outbound batch delivery. send() reports failure instead of raising."""

    async def send(self, payload: "BatchPayload") -> "SendResult": ...


__all__ = [
    "LoggerProtocol",
    "ClockProtocol",
    "StorageProtocol",
    "SocketHandler",
    "SocketChannelProtocol",
    "TokenProviderProtocol",
    "BatchTransportProtocol",
]
