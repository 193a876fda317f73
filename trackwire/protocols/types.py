"""Data types shared across the pipeline and the connection layer.

Wire names are camelCase (the tracking backend's JSON contract); Python
attributes are snake_case. to_dict()/from_dict() translate between them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


# =============================================================================
# ENUMS
# =============================================================================


class ConnectionStatus(str, Enum):
    """Socket lifecycle state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PresenceStatus(str, Enum):
    """User presence as reported to the server."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConsentStatus(str, Enum):
    """Tracking consent state."""
    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"


# =============================================================================
# TRACKING EVENT
# =============================================================================

_REQUIRED_STRING_FIELDS = ("visitorId", "sessionId", "eventType")


@dataclass(frozen=True)
class TrackingEvent:
    """A single behavioral event. Immutable once created.

    occurred_at is an ISO-8601 timestamp assigned by the producer.
    """
    visitor_id: str
    session_id: str
    event_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire/snapshot representation."""
        return {
            "visitorId": self.visitor_id,
            "sessionId": self.session_id,
            "eventType": self.event_type,
            "metadata": dict(self.metadata),
            "occurredAt": self.occurred_at,
        }

    @staticmethod
    def is_valid_record(data: Any) -> bool:
        """Structural check applied to persisted records before hydration."""
        if not isinstance(data, dict):
            return False
        for key in _REQUIRED_STRING_FIELDS:
            if not isinstance(data.get(key), str):
                return False
        if not isinstance(data.get("metadata"), dict):
            return False
        occurred_at = data.get("occurredAt", "")
        return occurred_at is None or isinstance(occurred_at, str)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrackingEvent":
        """Build an event from its wire representation.

        Raises:
            ValueError: If the record fails the structural check.
        """
        if not cls.is_valid_record(data):
            raise ValueError(f"Invalid tracking event record: {data!r}"[:200])
        return cls(
            visitor_id=data["visitorId"],
            session_id=data["sessionId"],
            event_type=data["eventType"],
            metadata=dict(data["metadata"]),
            occurred_at=data.get("occurredAt") or "",
        )


# =============================================================================
# TOKENS
# =============================================================================


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh credential pair as issued by the token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TokenPair"]:
        """Parse a persisted pair; None when the record is malformed."""
        if not isinstance(data, dict):
            return None
        access = data.get("accessToken")
        refresh = data.get("refreshToken")
        if not isinstance(access, str) or not access:
            return None
        if refresh is not None and not isinstance(refresh, str):
            return None
        return cls(access_token=access, refresh_token=refresh or None)


# =============================================================================
# CONNECTION STATE
# =============================================================================


@dataclass
class ConnectionState:
    """Observable connection/presence state.

    Mutated by activity and visibility handlers and by the socket's own
    connect/disconnect events. last_activity_at is epoch seconds.
    """
    connected: bool = False
    focused: bool = True
    last_activity_at: float = 0.0
    considered_inactive: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "focused": self.focused,
            "last_activity_at": self.last_activity_at,
            "considered_inactive": self.considered_inactive,
        }


# =============================================================================
# BATCH DELIVERY
# =============================================================================


@dataclass
class BatchPayload:
    """A batch of events plus the identity context it is sent under."""
    visitor_id: str
    session_id: str
    events: List[TrackingEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitorId": self.visitor_id,
            "sessionId": self.session_id,
            "events": [event.to_dict() for event in self.events],
        }


@dataclass
class SendResult:
    """Outcome of a transport send."""
    ok: bool
    accepted: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, accepted: int, status_code: Optional[int] = None) -> "SendResult":
        return cls(ok=True, accepted=accepted, status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> "SendResult":
        return cls(ok=False, error=error, status_code=status_code)


__all__ = [
    "ConnectionStatus",
    "PresenceStatus",
    "ConsentStatus",
    "TrackingEvent",
    "TokenPair",
    "ConnectionState",
    "BatchPayload",
    "SendResult",
]
