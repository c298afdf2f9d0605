"""Auth provider claim mappings.

Each identity provider puts the user id and display name under
different claim names.  A provider is described as data: ordered
candidate claims for the id and for the name (first present value
wins), plus an optional extractor for shapes a flat list cannot
express.  Candidate claims may be dot-paths into nested objects,
e.g. ``data.user.id``.

Register additional providers with ``register_provider``::

    register_provider("my_sso", ProviderConfig(
        name="My SSO",
        id_claims=["userId"],
        name_claims=["fullName"],
    ))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Extractor returns (customer_id, customer_name); either may be None.
ClaimExtractor = Callable[[dict[str, Any]], tuple[str | None, str | None]]


@dataclass(frozen=True)
class ProviderConfig:
    """Claim mapping for one auth provider."""

    name: str
    id_claims: list[str] = field(default_factory=list)
    name_claims: list[str] = field(default_factory=list)
    extractor: ClaimExtractor | None = None


def get_claim(claims: dict[str, Any], path: str) -> Any:
    """Resolve a claim name or dot-path; missing keys yield ``None``."""
    current: Any = claims
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def first_claim(claims: dict[str, Any], paths: list[str]) -> str | None:
    """First truthy claim among *paths*, as a string."""
    for path in paths:
        value = get_claim(claims, path)
        if value:
            return str(value)
    return None


def _wordpress_extractor(claims: dict[str, Any]) -> tuple[str | None, str | None]:
    user_id = (
        get_claim(claims, "data.user.id")
        or claims.get("sub")
        or claims.get("user_id")
    )
    display = (
        claims.get("user_display_name")
        or claims.get("user_nicename")
        or claims.get("name")
    )
    return (
        str(user_id) if user_id else None,
        str(display) if display else None,
    )


DEFAULT_PROVIDER = "generic"

PROVIDERS: dict[str, ProviderConfig] = {
    "microsoft": ProviderConfig(
        name="Microsoft Azure AD",
        id_claims=["oid", "sub", "preferred_username"],
        name_claims=["name", "given_name", "displayName"],
    ),
    "keycloak": ProviderConfig(
        name="Keycloak",
        id_claims=["sub", "preferred_username", "email"],
        name_claims=["name", "given_name", "preferred_username"],
    ),
    "auth0": ProviderConfig(
        name="Auth0",
        id_claims=["sub", "user_id"],
        name_claims=["name", "nickname", "given_name"],
    ),
    "okta": ProviderConfig(
        name="Okta",
        id_claims=["sub", "uid", "preferred_username"],
        name_claims=["name", "given_name", "preferred_username"],
    ),
    "google": ProviderConfig(
        name="Google OAuth",
        id_claims=["sub", "email"],
        name_claims=["name", "given_name"],
    ),
    "wordpress": ProviderConfig(
        name="WordPress JWT Auth",
        id_claims=["data.user.id", "sub", "user_id"],
        name_claims=["user_display_name", "user_nicename", "name"],
        extractor=_wordpress_extractor,
    ),
    "generic": ProviderConfig(
        name="Generic OIDC",
        id_claims=["sub", "user_id", "id", "preferred_username", "email"],
        name_claims=["name", "given_name", "nickname", "preferred_username"],
    ),
}


def register_provider(key: str, config: ProviderConfig) -> None:
    """Add or replace a provider mapping."""
    PROVIDERS[key.lower()] = config
    logger.info("Registered auth provider %s (%s)", key, config.name)


def get_provider(key: str | None) -> ProviderConfig:
    """Look up a provider, falling back to the generic OIDC mapping."""
    lookup = (key or DEFAULT_PROVIDER).lower()
    config = PROVIDERS.get(lookup)
    if config is None:
        logger.warning("Unknown auth provider %r, using generic configuration", key)
        return PROVIDERS[DEFAULT_PROVIDER]
    return config
