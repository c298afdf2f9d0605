"""Customer identity resolution.

Priority for the identity a chat runs under:

    1. an explicitly supplied customer id (and name)
    2. claims extracted from the bearer token via the provider mapping
    3. the guest sentinel

Malformed tokens and tokens without a usable claim degrade to the guest
identity.  An expired token only produces a warning; the server decides
whether to reject it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from chatsync.errors import TokenError
from chatsync.identity.providers import ProviderConfig, first_claim, get_provider
from chatsync.identity.tokens import is_token_expired, parse_token

logger = logging.getLogger(__name__)

GUEST_CUSTOMER_ID = "guest"


@dataclass(frozen=True)
class CustomerIdentity:
    customer_id: str
    customer_name: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.customer_id == GUEST_CUSTOMER_ID


def extract_identity(
    token: str,
    provider: str | ProviderConfig = "generic",
) -> CustomerIdentity | None:
    """Derive a customer identity from *token* claims.

    Returns ``None`` when the token cannot be parsed or no candidate id
    claim is present.  Never raises for bad tokens.
    """
    config = provider if isinstance(provider, ProviderConfig) else get_provider(provider)
    try:
        claims = parse_token(token)
    except TokenError as e:
        logger.warning("Failed to extract customer info from %s token: %s", config.name, e)
        return None

    if config.extractor is not None:
        custom_id, custom_name = config.extractor(claims)
        if custom_id:
            return CustomerIdentity(custom_id, custom_name or None)

    customer_id = first_claim(claims, config.id_claims)
    if not customer_id:
        logger.warning(
            "Could not extract customer ID from token. Tried claims: %s",
            ", ".join(config.id_claims),
        )
        return None

    customer_name = first_claim(claims, config.name_claims)
    logger.debug(
        "Extracted customer info from %s token: id=%s... name=%s",
        config.name, customer_id[:8], bool(customer_name),
    )
    return CustomerIdentity(customer_id, customer_name)


def resolve_customer(
    customer_id: str | None = None,
    customer_name: str | None = None,
    token: str | None = None,
    provider: str | ProviderConfig = "generic",
    guest_id: str = GUEST_CUSTOMER_ID,
) -> CustomerIdentity:
    """Apply the props > token > guest priority."""
    if customer_id:
        return CustomerIdentity(customer_id, customer_name or None)

    if token:
        if is_token_expired(token):
            logger.warning("JWT token is expired. Authentication may fail.")
        extracted = extract_identity(token, provider)
        if extracted is not None:
            return CustomerIdentity(
                extracted.customer_id,
                customer_name or extracted.customer_name,
            )

    return CustomerIdentity(guest_id, customer_name or None)


class IdentityResolver:
    """Caches the resolved identity until one of its inputs changes."""

    def __init__(self, provider: str | ProviderConfig = "generic", guest_id: str = GUEST_CUSTOMER_ID) -> None:
        self._provider = provider
        self._guest_id = guest_id
        self._cache_key: tuple[Any, ...] | None = None
        self._identity: CustomerIdentity | None = None

    def resolve(
        self,
        token: str | None = None,
        customer_id: str | None = None,
        customer_name: str | None = None,
        provider: str | ProviderConfig | None = None,
    ) -> CustomerIdentity:
        if provider is not None:
            self._provider = provider
        key = (token, self._provider_key(), customer_id, customer_name)
        if self._identity is not None and key == self._cache_key:
            return self._identity

        self._identity = resolve_customer(
            customer_id=customer_id,
            customer_name=customer_name,
            token=token,
            provider=self._provider,
            guest_id=self._guest_id,
        )
        self._cache_key = key
        return self._identity

    def _provider_key(self) -> Any:
        if isinstance(self._provider, ProviderConfig):
            return id(self._provider)
        return self._provider.lower()
