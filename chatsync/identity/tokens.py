"""Bearer token decoding.

Tokens are JWT-shaped (``header.payload.signature``).  The widget never
holds the signing key, so claims are read without signature
verification; the server remains the authority on whether a token is
valid.  Only the extracted claims are kept.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from jose import JWTError, jwt

from chatsync.errors import TokenError

logger = logging.getLogger(__name__)


def parse_token(token: str) -> dict[str, Any]:
    """Decode the claims of *token*.

    Raises ``TokenError`` for anything that is not a three-segment token
    with a base64url JSON-object payload.
    """
    if not token or not isinstance(token, str):
        raise TokenError("Invalid token: Token must be a non-empty string")

    if len(token.split(".")) != 3:
        raise TokenError(
            "Invalid token: JWT must have 3 parts (header.payload.signature)"
        )

    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        raise TokenError(f"Failed to parse JWT: {e}") from e

    if not isinstance(claims, dict):
        raise TokenError("Failed to parse JWT: payload is not an object")
    return claims


def is_token_expired(token: str, now: float | None = None) -> bool:
    """True when the ``exp`` claim is in the past.

    Tokens without ``exp`` never expire.  Tokens that cannot be parsed
    count as expired.
    """
    try:
        claims = parse_token(token)
    except TokenError as e:
        logger.warning("Failed to check token expiration: %s", e)
        return True

    exp = claims.get("exp")
    if exp is None:
        return False
    try:
        expires_at = float(exp)
    except (TypeError, ValueError):
        logger.warning("Token has non-numeric exp claim: %r", exp)
        return True

    current = time.time() if now is None else now
    return current >= expires_at
