"""Fakes for the clock, socket channel and token provider.

Each fake implements the matching protocol from trackwire.protocols so
components can be exercised without a network or real time.
"""

import base64
import inspect
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from trackwire.errors import TransportError


class FakeClock:
    """Manually advanced clock (ClockProtocol)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start

    def time(self) -> float:
        return self._now

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def advance_ms(self, milliseconds: float) -> None:
        self._now += milliseconds / 1000.0


def make_jwt(exp: Optional[float], **claims: Any) -> str:
    """Build an unsigned JWT carrying the given exp claim."""

    def encode(part: Dict[str, Any]) -> str:
        raw = json.dumps(part).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    payload = dict(claims)
    if exp is not None:
        payload["exp"] = exp
    return f"{encode({'alg': 'HS256', 'typ': 'JWT'})}.{encode(payload)}.signature"


class FakeChannel:
    """In-memory SocketChannelProtocol implementation."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.connect_calls: List[Dict[str, str]] = []
        self.emitted: List[Dict[str, Any]] = []
        self.closed = False
        self._connected = False
        self._handlers: Dict[str, List[Any]] = {}

    @property
    def connected(self) -> bool:
        return self._connected

    def on(self, event: str, handler: Any) -> None:
        self._handlers.setdefault(event, []).append(handler)

    async def connect(self, url: str, token: str) -> None:
        self.connect_calls.append({"url": url, "token": token})
        if self.fail_connect:
            raise TransportError("connection refused")
        self._connected = True

    async def close(self) -> None:
        was_connected = self._connected
        self._connected = False
        self.closed = True
        if was_connected:
            await self.fire("disconnect", "io client disconnect")

    async def emit(self, event: str, data: Any) -> None:
        if not self._connected:
            raise TransportError("not connected")
        self.emitted.append({"event": event, "data": data})

    async def fire(self, event: str, data: Any = None) -> None:
        """Simulate an event arriving from the server."""
        for handler in list(self._handlers.get(event, ())):
            result = handler(data)
            if inspect.isawaitable(result):
                await result

    async def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._connected = False
        await self.fire("disconnect", "io server disconnect")

    def events_named(self, event: str) -> List[Any]:
        return [frame["data"] for frame in self.emitted if frame["event"] == event]


class FakeChannelFactory:
    """ChannelFactory that records every channel it builds."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.channels: List[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(fail_connect=self.fail_connect)
        self.channels.append(channel)
        return channel

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]


class FakeTokenProvider:
    """TokenProviderProtocol implementation with scripted tokens."""

    def __init__(self, token: Optional[str] = "token-1"):
        self.token = token
        self.renewed_tokens: List[Optional[str]] = []
        self.near_expiration = False
        self.in_progress = False
        self.get_calls = 0
        self.renew_calls = 0

    async def get_valid_access_token(self) -> Optional[str]:
        self.get_calls += 1
        if self.near_expiration and self.renewed_tokens:
            self.token = self.renewed_tokens.pop(0)
            self.near_expiration = False
        return self.token

    async def force_renew(self) -> Optional[str]:
        self.renew_calls += 1
        if self.renewed_tokens:
            self.token = self.renewed_tokens.pop(0)
        return self.token

    def is_request_in_progress(self) -> bool:
        return self.in_progress

    def is_near_expiration(self, token: Optional[str] = None) -> bool:
        return self.near_expiration
