"""Customer identity: token claims → stable customer id and name.

    from chatsync.identity import resolve_customer
    identity = resolve_customer(token=bearer, provider="microsoft")
"""

from chatsync.identity.providers import (
    PROVIDERS,
    ProviderConfig,
    get_provider,
    register_provider,
)
from chatsync.identity.resolver import (
    GUEST_CUSTOMER_ID,
    CustomerIdentity,
    IdentityResolver,
    extract_identity,
    resolve_customer,
)
from chatsync.identity.tokens import is_token_expired, parse_token

__all__ = [
    "PROVIDERS",
    "ProviderConfig",
    "get_provider",
    "register_provider",
    "GUEST_CUSTOMER_ID",
    "CustomerIdentity",
    "IdentityResolver",
    "extract_identity",
    "resolve_customer",
    "is_token_expired",
    "parse_token",
]
