"""Credential acquisition and renewal."""

from trackwire.auth.jwt import decode_claims, decode_expiry
from trackwire.auth.token_client import TokenClient
from trackwire.auth.token_lifecycle import TokenLifecycle, TokenListener

__all__ = [
    "TokenClient",
    "TokenLifecycle",
    "TokenListener",
    "decode_claims",
    "decode_expiry",
]
