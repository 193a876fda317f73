"""Expiry-claim decoding for JWT access tokens.

Only the payload segment is read; signatures are the server's business.
"""

import base64
import json
from typing import Any, Dict, Optional


def decode_claims(token: str) -> Optional[Dict[str, Any]]:
    """Decode the payload segment of a JWT. None when it is not a JWT."""
    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (ValueError, UnicodeError):
        return None
    return claims if isinstance(claims, dict) else None


def decode_expiry(token: str) -> Optional[float]:
    """Return the exp claim (epoch seconds), or None if absent/undecodable."""
    claims = decode_claims(token)
    if claims is None:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


__all__ = ["decode_claims", "decode_expiry"]
