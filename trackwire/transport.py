"""Batch transports.

SocketBatchTransport emits "tracking:batch" over the managed socket.
HttpBatchTransport posts to {api_endpoint}/tracking-v2/events.

Both truncate to MAX_BATCH_SIZE events, retry transient failures with a
fixed delay and report the outcome as a SendResult instead of raising.
"""

import asyncio
from typing import Optional

import httpx

from trackwire.config.constants import (
    ERROR_SNIPPET_MAX_LENGTH,
    EVENT_TRACKING_BATCH,
    MAX_BATCH_SIZE,
    SEND_MAX_RETRIES,
    SEND_RETRY_DELAY_SECONDS,
)
from trackwire.connection.manager import ConnectionManager
from trackwire.errors import AuthenticationError, TransportError
from trackwire.protocols import BatchPayload, LoggerProtocol, SendResult, TokenProviderProtocol
from trackwire.utils.logging import get_component_logger

TRACKING_EVENTS_PATH = "/tracking-v2/events"


def truncate_payload(payload: BatchPayload, limit: int = MAX_BATCH_SIZE) -> BatchPayload:
    if len(payload.events) <= limit:
        return payload
    return BatchPayload(
        visitor_id=payload.visitor_id,
        session_id=payload.session_id,
        events=payload.events[:limit],
    )


class _RetryingTransport:
    """Fixed-delay retry loop shared by the concrete transports."""

    name = "transport"

    def __init__(
        self,
        max_retries: int = SEND_MAX_RETRIES,
        retry_delay_seconds: float = SEND_RETRY_DELAY_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._logger = get_component_logger(type(self).__name__, logger)

    async def send(self, payload: BatchPayload) -> SendResult:
        payload = truncate_payload(payload)
        if not payload.events:
            return SendResult.success(accepted=0)

        last_error: Optional[TransportError] = None
        for attempt in range(self._max_retries + 1):
            try:
                status_code = await self._send_once(payload)
            except TransportError as e:
                last_error = e
                if not self._is_retryable(e) or attempt == self._max_retries:
                    break
                self._logger.warning(
                    "batch_send_retry",
                    transport=self.name,
                    attempt=attempt + 1,
                    status_code=e.status_code,
                    error=str(e),
                )
                await asyncio.sleep(self._retry_delay)
                continue

            self._logger.debug("batch_sent", transport=self.name, events=len(payload.events))
            return SendResult.success(accepted=len(payload.events), status_code=status_code)

        self._logger.error(
            "batch_send_failed",
            transport=self.name,
            events=len(payload.events),
            status_code=last_error.status_code if last_error else None,
            error=str(last_error),
        )
        return SendResult.failure(
            str(last_error), status_code=last_error.status_code if last_error else None
        )

    def _is_retryable(self, error: TransportError) -> bool:
        return error.retryable

    async def _send_once(self, payload: BatchPayload) -> Optional[int]:
        raise NotImplementedError


class SocketBatchTransport(_RetryingTransport):
    """Delivers batches over the ConnectionManager's socket."""

    name = "socket"

    def __init__(
        self,
        connection: ConnectionManager,
        max_retries: int = SEND_MAX_RETRIES,
        retry_delay_seconds: float = SEND_RETRY_DELAY_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        super().__init__(max_retries, retry_delay_seconds, logger)
        self._connection = connection

    def _is_retryable(self, error: TransportError) -> bool:
        # Without a live socket the batch waits for the next dispatch.
        return self._connection.is_connected and error.retryable

    async def _send_once(self, payload: BatchPayload) -> Optional[int]:
        await self._connection.emit(EVENT_TRACKING_BATCH, payload.to_dict())
        return None


class HttpBatchTransport(_RetryingTransport):
    """Delivers batches with an HTTP POST.

    A 401/403 renews the credential and counts as a retry; other 4xx
    responses are not retried.
    """

    name = "http"

    def __init__(
        self,
        api_endpoint: str,
        tokens: Optional[TokenProviderProtocol] = None,
        timeout: float = 10.0,
        max_retries: int = SEND_MAX_RETRIES,
        retry_delay_seconds: float = SEND_RETRY_DELAY_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        super().__init__(max_retries, retry_delay_seconds, logger)
        self._url = f"{api_endpoint.rstrip('/')}{TRACKING_EVENTS_PATH}"
        self._tokens = tokens
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def _is_retryable(self, error: TransportError) -> bool:
        if isinstance(error, AuthenticationError):
            return self._tokens is not None
        return error.retryable

    async def _send_once(self, payload: BatchPayload) -> Optional[int]:
        headers = {"Content-Type": "application/json"}
        if self._tokens is not None:
            token = await self._tokens.get_valid_access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload.to_dict(), headers=headers)
        except httpx.RequestError as e:
            raise TransportError(f"Batch POST failed: {e}") from e

        if response.status_code in (401, 403):
            if self._tokens is not None:
                await self._tokens.force_renew()
            raise AuthenticationError(
                f"Batch POST rejected credential ({response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            snippet = response.text[:ERROR_SNIPPET_MAX_LENGTH]
            raise TransportError(
                f"Batch POST failed with {response.status_code}: {snippet}",
                status_code=response.status_code,
            )
        return response.status_code


__all__ = [
    "HttpBatchTransport",
    "SocketBatchTransport",
    "TRACKING_EVENTS_PATH",
    "truncate_payload",
]
