"""Tests for token decoding, provider claim mappings and identity resolution."""

from __future__ import annotations

import time

import pytest

from chatsync.errors import TokenError
from chatsync.identity import (
    GUEST_CUSTOMER_ID,
    PROVIDERS,
    CustomerIdentity,
    IdentityResolver,
    ProviderConfig,
    extract_identity,
    get_provider,
    is_token_expired,
    parse_token,
    register_provider,
    resolve_customer,
)
from tests.fakes import make_token


# ====================================================================
# Token parsing
# ====================================================================


class TestParseToken:

    def test_returns_claims(self) -> None:
        token = make_token({"sub": "user-1", "name": "Ada"})
        assert parse_token(token) == {"sub": "user-1", "name": "Ada"}

    def test_empty_token(self) -> None:
        with pytest.raises(TokenError, match="non-empty string"):
            parse_token("")

    def test_wrong_segment_count(self) -> None:
        with pytest.raises(TokenError, match="3 parts"):
            parse_token("only.two")

    def test_garbage_payload(self) -> None:
        with pytest.raises(TokenError, match="Failed to parse JWT"):
            parse_token("eyJhbGciOiJub25lIn0.bm90anNvbg.c2ln")


class TestTokenExpiry:

    def test_future_exp_is_valid(self) -> None:
        token = make_token({"sub": "u", "exp": int(time.time()) + 3600})
        assert is_token_expired(token) is False

    def test_past_exp_is_expired(self) -> None:
        token = make_token({"sub": "u", "exp": 1000})
        assert is_token_expired(token) is True

    def test_exp_equal_to_now_is_expired(self) -> None:
        token = make_token({"sub": "u", "exp": 5000})
        assert is_token_expired(token, now=5000) is True
        assert is_token_expired(token, now=4999) is False

    def test_missing_exp_never_expires(self) -> None:
        assert is_token_expired(make_token({"sub": "u"})) is False

    def test_unparseable_counts_as_expired(self) -> None:
        assert is_token_expired("not-a-token") is True


# ====================================================================
# Providers
# ====================================================================


class TestProviders:

    def test_builtin_providers(self) -> None:
        for key in ("microsoft", "keycloak", "auth0", "okta", "google", "wordpress", "generic"):
            assert key in PROVIDERS

    def test_unknown_provider_falls_back_to_generic(self) -> None:
        assert get_provider("nonexistent") is PROVIDERS["generic"]
        assert get_provider(None) is PROVIDERS["generic"]

    def test_lookup_is_case_insensitive(self) -> None:
        assert get_provider("Microsoft") is PROVIDERS["microsoft"]

    def test_microsoft_prefers_oid(self) -> None:
        token = make_token({"oid": "oid-1", "sub": "sub-1", "name": "Ada Lovelace"})
        identity = extract_identity(token, "microsoft")
        assert identity == CustomerIdentity("oid-1", "Ada Lovelace")

    def test_microsoft_falls_back_to_sub(self) -> None:
        token = make_token({"sub": "sub-1", "given_name": "Ada"})
        assert extract_identity(token, "microsoft") == CustomerIdentity("sub-1", "Ada")

    def test_wordpress_nested_user_id(self) -> None:
        token = make_token({
            "data": {"user": {"id": 17}},
            "user_display_name": "Grace",
        })
        assert extract_identity(token, "wordpress") == CustomerIdentity("17", "Grace")

    def test_wordpress_falls_back_to_sub(self) -> None:
        token = make_token({"sub": "wp-9", "user_nicename": "grace"})
        assert extract_identity(token, "wordpress") == CustomerIdentity("wp-9", "grace")

    def test_generic_email_as_id(self) -> None:
        token = make_token({"email": "ada@example.com"})
        identity = extract_identity(token, "generic")
        assert identity.customer_id == "ada@example.com"
        assert identity.customer_name is None

    def test_no_id_claim_yields_none(self) -> None:
        assert extract_identity(make_token({"name": "Nobody"}), "generic") is None

    def test_malformed_token_yields_none(self) -> None:
        assert extract_identity("bad", "generic") is None

    def test_register_custom_provider(self) -> None:
        register_provider("acme_sso", ProviderConfig(
            name="Acme SSO", id_claims=["employee.number"], name_claims=["fullName"],
        ))
        try:
            token = make_token({"employee": {"number": "E-7"}, "fullName": "Hedy"})
            assert extract_identity(token, "acme_sso") == CustomerIdentity("E-7", "Hedy")
        finally:
            PROVIDERS.pop("acme_sso", None)

    def test_provider_config_instance(self) -> None:
        config = ProviderConfig(name="Inline", id_claims=["uid"])
        identity = extract_identity(make_token({"uid": "u-1"}), config)
        assert identity == CustomerIdentity("u-1", None)


# ====================================================================
# Resolution priority
# ====================================================================


class TestResolveCustomer:

    def test_explicit_customer_wins(self) -> None:
        token = make_token({"sub": "from-token", "name": "Token Name"})
        identity = resolve_customer(customer_id="explicit", customer_name="Explicit", token=token)
        assert identity == CustomerIdentity("explicit", "Explicit")

    def test_token_used_without_explicit_id(self) -> None:
        token = make_token({"sub": "from-token", "name": "Token Name"})
        assert resolve_customer(token=token) == CustomerIdentity("from-token", "Token Name")

    def test_explicit_name_overrides_token_name(self) -> None:
        token = make_token({"sub": "from-token", "name": "Token Name"})
        identity = resolve_customer(customer_name="Preferred", token=token)
        assert identity == CustomerIdentity("from-token", "Preferred")

    def test_expired_token_still_used(self) -> None:
        token = make_token({"sub": "from-token", "exp": 1000})
        assert resolve_customer(token=token).customer_id == "from-token"

    def test_malformed_token_is_guest(self) -> None:
        identity = resolve_customer(token="definitely.not.valid")
        assert identity.customer_id == GUEST_CUSTOMER_ID
        assert identity.is_guest

    def test_nothing_is_guest(self) -> None:
        assert resolve_customer().is_guest

    def test_custom_guest_id(self) -> None:
        assert resolve_customer(guest_id="anon").customer_id == "anon"


class TestIdentityResolver:

    def test_caches_until_inputs_change(self) -> None:
        resolver = IdentityResolver(provider="generic")
        token = make_token({"sub": "u-1"})

        first = resolver.resolve(token=token)
        assert resolver.resolve(token=token) is first

        other = resolver.resolve(token=make_token({"sub": "u-2"}))
        assert other.customer_id == "u-2"

    def test_provider_change_invalidates(self) -> None:
        resolver = IdentityResolver(provider="generic")
        token = make_token({"oid": "oid-1", "sub": "sub-1"})

        assert resolver.resolve(token=token).customer_id == "sub-1"
        assert resolver.resolve(token=token, provider="microsoft").customer_id == "oid-1"
