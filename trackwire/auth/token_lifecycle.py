"""TokenLifecycle - acquires and renews the short-lived credential pair.

get_valid_access_token() returns the cached access token while it is
outside the safety margin of its expiry claim. Otherwise it renews:
refresh first when a refresh token is held, full issue as the fallback,
retried with a fixed delay up to max_attempts.

Single-flight: the first caller that needs a renewal starts one shared
asyncio.Task; every concurrent caller awaits that same task (shielded, so
one caller being cancelled does not cancel it for the rest). The network
layer sees exactly one issue/refresh sequence per renewal.
"""

import asyncio
import json
from typing import Callable, List, Optional

from trackwire.auth.jwt import decode_expiry
from trackwire.auth.token_client import TokenClient
from trackwire.config.constants import (
    TOKEN_MAX_ATTEMPTS,
    TOKEN_RETRY_DELAY_SECONDS,
    TOKEN_SAFETY_MARGIN_SECONDS,
    TOKEN_STORAGE_KEY,
)
from trackwire.errors import ConfigurationError, TokenUnavailableError, TransportError
from trackwire.protocols import ClockProtocol, LoggerProtocol, StorageProtocol, TokenPair
from trackwire.utils.logging import get_component_logger

TokenListener = Callable[[str], None]


class TokenLifecycle:
    """Owns the token pair; implements TokenProviderProtocol."""

    def __init__(
        self,
        client: TokenClient,
        client_fingerprint: Callable[[], str],
        storage: StorageProtocol,
        clock: ClockProtocol,
        safety_margin_seconds: float = TOKEN_SAFETY_MARGIN_SECONDS,
        max_attempts: int = TOKEN_MAX_ATTEMPTS,
        retry_delay_seconds: float = TOKEN_RETRY_DELAY_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Initialize the lifecycle.

        Args:
            client: HTTP client for the token endpoints
            client_fingerprint: Returns the fingerprint tokens are issued for
            storage: Slot the pair is mirrored into
            clock: Time provider
            safety_margin_seconds: Tokens closer than this to expiry are renewed
            max_attempts: Renewal attempts before giving up
            retry_delay_seconds: Fixed delay between attempts
            logger: Optional logger
        """
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {max_attempts}")
        self._client = client
        self._client_fingerprint = client_fingerprint
        self._storage = storage
        self._clock = clock
        self._safety_margin = safety_margin_seconds
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay_seconds
        self._logger = get_component_logger("TokenLifecycle", logger)

        self._tokens: Optional[TokenPair] = None
        self._loaded = False
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: List[TokenListener] = []

    # ─── Public API ───

    @property
    def tokens(self) -> Optional[TokenPair]:
        self._ensure_loaded()
        return self._tokens

    async def get_valid_access_token(self) -> Optional[str]:
        """Return a usable access token, renewing if needed.

        Returns:
            The token, or None when every renewal attempt failed.
        """
        self._ensure_loaded()
        if self._tokens and not self.is_near_expiration(self._tokens.access_token):
            return self._tokens.access_token
        return await self._await_renewal()

    async def force_renew(self) -> Optional[str]:
        """Renew regardless of the cached token's expiry.

        Used after the server rejected the current credential. Joins a
        renewal already in flight instead of starting a second one.
        """
        self._ensure_loaded()
        return await self._await_renewal()

    async def require_access_token(self) -> str:
        """Like get_valid_access_token() but raises when none is available.

        Raises:
            TokenUnavailableError: If no token could be obtained.
        """
        token = await self.get_valid_access_token()
        if token is None:
            raise TokenUnavailableError("No valid access token could be obtained")
        return token

    def is_request_in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def is_near_expiration(self, token: Optional[str] = None) -> bool:
        """True when the token has less than the safety margin left.

        An undecodable token, or no token at all, counts as near expiration.
        """
        if token is None:
            self._ensure_loaded()
            token = self._tokens.access_token if self._tokens else None
        if not token:
            return True
        expiry = decode_expiry(token)
        if expiry is None:
            return True
        return (expiry - self._clock.time()) < self._safety_margin

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        """Notify listener with each new access token; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: TokenListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        """Forget the pair in memory and in storage."""
        self._tokens = None
        self._loaded = True
        try:
            self._storage.remove_item(TOKEN_STORAGE_KEY)
        except Exception as e:
            self._logger.warning("token_storage_clear_failed", error=str(e))
        self._logger.info("tokens_cleared")

    # ─── Renewal ───

    async def _await_renewal(self) -> Optional[str]:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._renew_with_retries())
        else:
            self._logger.debug("token_renewal_joined")
        return await asyncio.shield(self._inflight)

    async def _renew_with_retries(self) -> Optional[str]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                pair = await self._renew_once()
            except TransportError as e:
                self._logger.warning(
                    "token_renewal_failed",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    status_code=e.status_code,
                    error=str(e),
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay)
                continue

            self._set_tokens(pair)
            self._logger.info("token_renewed", attempt=attempt)
            return pair.access_token

        self._logger.error("token_unavailable", attempts=self._max_attempts)
        return None

    async def _renew_once(self) -> TokenPair:
        fingerprint = self._client_fingerprint()
        refresh_token = self._tokens.refresh_token if self._tokens else None
        if refresh_token:
            try:
                return await self._client.refresh(fingerprint, refresh_token)
            except TransportError as e:
                self._logger.warning(
                    "token_refresh_failed", status_code=e.status_code, error=str(e)
                )
        return await self._client.issue(fingerprint)

    # ─── Persistence ───

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            raw = self._storage.get_item(TOKEN_STORAGE_KEY)
        except Exception as e:
            self._logger.warning("token_storage_read_failed", error=str(e))
            return
        if not raw:
            return
        try:
            self._tokens = TokenPair.from_dict(json.loads(raw))
        except (TypeError, ValueError):
            self._tokens = None
        if self._tokens is None:
            self._logger.warning("token_storage_malformed")

    def _set_tokens(self, pair: TokenPair) -> None:
        self._tokens = pair
        try:
            self._storage.set_item(TOKEN_STORAGE_KEY, json.dumps(pair.to_dict()))
        except Exception as e:
            self._logger.warning("token_persist_failed", error=str(e))

        for listener in list(self._listeners):
            try:
                listener(pair.access_token)
            except Exception as e:
                self._logger.error("token_listener_error", error=str(e))


__all__ = ["TokenLifecycle", "TokenListener"]
