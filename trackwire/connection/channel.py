"""WebSocketChannel - one authenticated socket connection.

Frames are JSON objects {"event": name, "data": payload} in both
directions. The first frame after the handshake carries the credential:
{"token": access_token}. The server answers a rejected credential with an
"auth_error" frame, or by closing with AUTH_CLOSE_CODE.

The channel never reconnects on its own; ConnectionManager owns that
policy and builds a fresh channel per connection.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from trackwire.config.constants import EVENT_AUTH_ERROR, EVENT_CONNECT, EVENT_DISCONNECT
from trackwire.errors import TransportError
from trackwire.protocols import LoggerProtocol, SocketHandler
from trackwire.utils.logging import get_component_logger

AUTH_CLOSE_CODE = 4001


class WebSocketChannel:
    """SocketChannelProtocol implementation on the websockets library."""

    def __init__(
        self,
        open_timeout: float = 10.0,
        logger: Optional[LoggerProtocol] = None,
    ) -> None:
        self._open_timeout = open_timeout
        self._logger = get_component_logger("WebSocketChannel", logger)
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._handlers: Dict[str, List[SocketHandler]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._disconnect_fired = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._disconnect_fired

    def on(self, event: str, handler: SocketHandler) -> None:
        """Register a handler for a lifecycle or server event."""
        self._handlers.setdefault(event, []).append(handler)

    async def connect(self, url: str, token: str) -> None:
        """Open the socket and present the credential.

        Raises:
            TransportError: If the connection cannot be established.
        """
        try:
            ws = await websockets.connect(url, open_timeout=self._open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"WebSocket connect to {url} failed: {e}") from e

        try:
            await ws.send(json.dumps({"token": token}))
        except ConnectionClosed as e:
            raise TransportError(f"WebSocket closed during handshake: {e}") from e

        self._ws = ws
        self._disconnect_fired = False
        self._reader = asyncio.create_task(self._read_loop(ws))
        self._logger.info("websocket_connected", url=url)
        self._dispatch(EVENT_CONNECT, None)

    async def emit(self, event: str, data: Any) -> None:
        """Send one event frame.

        Raises:
            TransportError: If the socket is not open or the send fails.
        """
        if not self.connected:
            raise TransportError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}, default=str))
        except ConnectionClosed as e:
            self._fire_disconnect("transport close")
            raise TransportError(f"WebSocket closed while sending {event}: {e}") from e

    async def close(self) -> None:
        """Close the socket. Idempotent."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        if reader and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if ws is not None:
            try:
                await ws.close()
            except WebSocketException as e:
                self._logger.debug("websocket_close_error", error=str(e))
            self._fire_disconnect("io client disconnect")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            code = getattr(e.rcvd, "code", None)
            if code == AUTH_CLOSE_CODE:
                self._dispatch(EVENT_AUTH_ERROR, {"message": getattr(e.rcvd, "reason", "")})
            self._logger.info("websocket_closed_by_server", code=code)
        self._fire_disconnect("io server disconnect")

    def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            self._logger.warning("websocket_frame_malformed")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            self._logger.warning("websocket_frame_malformed")
            return
        self._dispatch(frame["event"], frame.get("data"))

    def _fire_disconnect(self, reason: str) -> None:
        if self._disconnect_fired:
            return
        self._disconnect_fired = True
        self._dispatch(EVENT_DISCONNECT, reason)

    def _dispatch(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
            except Exception as e:
                self._logger.error("websocket_handler_error", socket_event=event, error=str(e))
                continue
            if inspect.isawaitable(result):
                # Run coroutine handlers outside the reader so they may close the channel.
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)


__all__ = ["AUTH_CLOSE_CODE", "WebSocketChannel"]
