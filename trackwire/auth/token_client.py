"""HTTP client for the token endpoints.

    POST {endpoint}/token          {client}                -> {access_token, refresh_token}
    POST {endpoint}/token/refresh  {client, refresh_token} -> {access_token}

Single attempt per call; retry policy belongs to TokenLifecycle.
"""

from typing import Any, Dict, Optional

import httpx

from trackwire.config.constants import ERROR_SNIPPET_MAX_LENGTH, TOKEN_REQUEST_TIMEOUT_SECONDS
from trackwire.errors import AuthenticationError, TransportError
from trackwire.protocols import LoggerProtocol, TokenPair
from trackwire.utils.logging import get_component_logger


class TokenClient:
    """Issues and refreshes token pairs over HTTP."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = TOKEN_REQUEST_TIMEOUT_SECONDS,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._logger = get_component_logger("TokenClient", logger)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def issue(self, client: str) -> TokenPair:
        """Request a brand-new pair keyed by the client fingerprint."""
        data = await self._post("/token", {"client": client})
        access = data.get("access_token")
        if not isinstance(access, str) or not access:
            raise TransportError("Token response missing access_token")
        refresh = data.get("refresh_token")
        return TokenPair(
            access_token=access,
            refresh_token=refresh if isinstance(refresh, str) and refresh else None,
        )

    async def refresh(self, client: str, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new access token.

        The returned pair keeps the presented refresh token unless the
        server rotates it.
        """
        data = await self._post(
            "/token/refresh", {"client": client, "refresh_token": refresh_token}
        )
        access = data.get("access_token")
        if not isinstance(access, str) or not access:
            raise TransportError("Refresh response missing access_token")
        rotated = data.get("refresh_token")
        return TokenPair(
            access_token=access,
            refresh_token=rotated if isinstance(rotated, str) and rotated else refresh_token,
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._endpoint}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=body)
        except httpx.RequestError as e:
            self._logger.warning("token_request_network_error", path=path, error=str(e))
            raise TransportError(f"Token request to {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Token request to {path} rejected", status_code=response.status_code
            )
        if response.status_code >= 400:
            snippet = response.text[:ERROR_SNIPPET_MAX_LENGTH]
            raise TransportError(
                f"Token request to {path} failed with {response.status_code}: {snippet}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Token response from {path} is not JSON") from e
        if not isinstance(data, dict):
            raise TransportError(f"Token response from {path} is not an object")
        return data


__all__ = ["TokenClient"]
