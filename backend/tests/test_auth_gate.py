"""
Noterverse Backend — Request Authorization Gate Unit Tests
============================================================

What:  Tests for the verify → resolve → derive pipeline.
How:   Real IdentityVerifier with locally signed tokens, in-memory user
       store, real key engine. Only the JWKS fetch is faked.

What we test:
    ✅ Valid token walks every state to AUTHORIZED
    ✅ Missing / non-bearer header → REJECTED (missing_token)
    ✅ Expired token → REJECTED, user resolver never invoked
    ✅ User resolution failure after verification → REJECTED
    ✅ Same subject → same user and same key on every request
    ✅ Different subjects → different keys
"""

from unittest.mock import AsyncMock

import pytest

from app.exceptions import AuthError, DatabaseError, KeyResolutionError, TokenError
from app.services.auth_gate import (
    AuthAttempt,
    AuthState,
    RequestAuthorizationGate,
    extract_bearer_token,
)
from app.services.identity_verifier import IdentityVerifier
from app.services.user_resolver import UserResolver

from tests.conftest import TEST_AUDIENCE, TEST_ISSUER


@pytest.fixture
def gate(static_resolver, key_engine):
    verifier = IdentityVerifier(
        key_resolver=static_resolver,
        audience=TEST_AUDIENCE,
        issuers=[TEST_ISSUER],
    )
    return RequestAuthorizationGate(verifier=verifier, key_engine=key_engine)


class TestExtractBearerToken:

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc.def.ghi", "abc.def.ghi"),
            ("  Bearer   abc.def.ghi  ", "abc.def.ghi"),
            (None, None),
            ("", None),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer", None),
            ("Bearer a b", None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestRequestAuthorizationGate:

    @pytest.mark.asyncio
    async def test_authorized_walks_every_state(self, gate, make_token, memory_store):
        attempt = AuthAttempt()

        context = await gate.authorize(
            f"Bearer {make_token(sub='google-oauth2|12345')}",
            UserResolver(memory_store),
            attempt,
        )

        assert attempt.state == AuthState.AUTHORIZED
        assert attempt.history == [
            AuthState.UNAUTHENTICATED,
            AuthState.VERIFIED,
            AuthState.RESOLVED,
            AuthState.KEYED,
            AuthState.AUTHORIZED,
        ]
        assert attempt.context is context
        assert context.user.external_id == "google-oauth2|12345"
        assert context.key == gate.key_engine.derive("google-oauth2|12345")

    @pytest.mark.asyncio
    async def test_missing_header_rejected(self, gate, memory_store):
        attempt = AuthAttempt()

        with pytest.raises(AuthError) as exc_info:
            await gate.authorize(None, UserResolver(memory_store), attempt)

        assert exc_info.value.code == "missing_token"
        assert attempt.state == AuthState.REJECTED
        assert attempt.error is exc_info.value

    @pytest.mark.asyncio
    async def test_wrong_scheme_rejected(self, gate, memory_store):
        with pytest.raises(AuthError) as exc_info:
            await gate.authorize("Basic dXNlcjpwYXNz", UserResolver(memory_store))
        assert exc_info.value.code == "missing_token"

    @pytest.mark.asyncio
    async def test_expired_token_never_resolves_user(self, gate, make_token):
        resolver = AsyncMock(spec=UserResolver)
        attempt = AuthAttempt()

        with pytest.raises(TokenError):
            await gate.authorize(f"Bearer {make_token(exp_offset=-3600)}", resolver, attempt)

        assert attempt.state == AuthState.REJECTED
        assert AuthState.VERIFIED not in attempt.history
        resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_token_creates_no_user(self, gate, make_token, memory_store, other_rsa_keypair):
        forged = make_token(private_pem_override=other_rsa_keypair[0])

        with pytest.raises(TokenError):
            await gate.authorize(f"Bearer {forged}", UserResolver(memory_store))

        assert memory_store.users == {}

    @pytest.mark.asyncio
    async def test_key_outage_rejected(self, key_engine, make_token, memory_store):
        failing = AsyncMock()
        failing.get_signing_key = AsyncMock(side_effect=KeyResolutionError(retry_after=30))
        gate = RequestAuthorizationGate(
            verifier=IdentityVerifier(failing, audience=TEST_AUDIENCE, issuers=[TEST_ISSUER]),
            key_engine=key_engine,
        )
        attempt = AuthAttempt()

        with pytest.raises(KeyResolutionError):
            await gate.authorize(f"Bearer {make_token()}", UserResolver(memory_store), attempt)

        assert attempt.state == AuthState.REJECTED

    @pytest.mark.asyncio
    async def test_resolution_failure_rejected(self, gate, make_token):
        resolver = AsyncMock(spec=UserResolver)
        resolver.resolve.side_effect = DatabaseError(message="Could not complete sign-in.")
        attempt = AuthAttempt()

        with pytest.raises(DatabaseError):
            await gate.authorize(f"Bearer {make_token()}", resolver, attempt)

        assert attempt.state == AuthState.REJECTED
        assert attempt.history == [
            AuthState.UNAUTHENTICATED,
            AuthState.VERIFIED,
            AuthState.REJECTED,
        ]
        assert isinstance(attempt.error, DatabaseError)
        assert attempt.context is None

    @pytest.mark.asyncio
    async def test_same_subject_same_user_and_key(self, gate, make_token, memory_store):
        resolver = UserResolver(memory_store)

        first = await gate.authorize(f"Bearer {make_token(sub='user-A')}", resolver)
        second = await gate.authorize(f"Bearer {make_token(sub='user-A')}", resolver)

        assert first.user_id == second.user_id
        assert first.key == second.key

    @pytest.mark.asyncio
    async def test_different_subjects_different_keys(self, gate, make_token, memory_store):
        resolver = UserResolver(memory_store)

        a = await gate.authorize(f"Bearer {make_token(sub='user-A')}", resolver)
        b = await gate.authorize(f"Bearer {make_token(sub='user-B')}", resolver)

        assert a.user_id != b.user_id
        assert a.key != b.key

    @pytest.mark.asyncio
    async def test_context_repr_hides_key(self, gate, make_token, memory_store):
        context = await gate.authorize(f"Bearer {make_token()}", UserResolver(memory_store))
        assert context.key.material.hex() not in repr(context)
