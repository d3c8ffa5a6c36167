"""
Noterverse Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Reusable infrastructure: mocked DB session, signing keys, token
       factory, in-memory user store, API client.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Session-scoped (created once for all tests):
    └── rsa_keypair / other_rsa_keypair: RSA keys for signing test tokens

    Function-scoped (created fresh for each test):
    ├── mock_db_session: Mock database session (no real DB needed)
    ├── key_engine: KeyDerivationEngine with a test root secret
    ├── make_token: Builds signed RS256 ID tokens with overridable claims
    ├── static_resolver: KeyResolver serving the test public key
    ├── memory_store: In-memory UserStore honouring external_id uniqueness
    └── client: HTTPX AsyncClient bound to the ASGI app
"""

import asyncio
import os
import time
from typing import AsyncGenerator, Dict, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

# Settings are read at import time, so the environment must be in place
# before anything under `app` is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["ROOT_SECRET"] = "test-root-secret-not-for-production"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.exceptions import ResolutionConflict
from app.services.key_derivation import KeyDerivationEngine
from app.services.key_resolver import KeyResolver
from app.services.user_resolver import ResolvedUser, UserStore

TEST_AUDIENCE = "test-client-id.apps.googleusercontent.com"
TEST_ISSUER = "https://accounts.google.com"
TEST_KID = "test-kid-1"


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class StaticKeyResolver(KeyResolver):
    """KeyResolver over a fixed kid → key map; counts lookups."""

    def __init__(self, keys: Dict[str, str]):
        self.keys = keys
        self.calls = 0

    async def get_signing_key(self, kid: str) -> Optional[str]:
        self.calls += 1
        return self.keys.get(kid)


class InMemoryUserStore(UserStore):
    """
    UserStore with the same contract as the database one.

    Yields to the event loop between the uniqueness check and the insert
    so concurrent creates genuinely interleave.
    """

    def __init__(self):
        self.users: Dict[str, ResolvedUser] = {}
        self.create_calls = 0
        self.conflicts = 0

    async def get_by_external_id(self, external_id: str) -> Optional[ResolvedUser]:
        await asyncio.sleep(0)
        return self.users.get(external_id)

    async def create(self, external_id, email, name) -> ResolvedUser:
        self.create_calls += 1
        await asyncio.sleep(0)
        if external_id in self.users:
            self.conflicts += 1
            raise ResolutionConflict(external_id=external_id)
        user = ResolvedUser(id=uuid4(), external_id=external_id, email=email, name=name)
        self.users[external_id] = user
        return user

    async def update_profile(self, user_id, email, name) -> None:
        for external_id, user in self.users.items():
            if user.id == user_id:
                self.users[external_id] = ResolvedUser(
                    id=user.id, external_id=external_id, email=email, name=name
                )


# ══════════════════════════════════════════════════════════════════════════
# Session-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

def _generate_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture(scope="session")
def rsa_keypair():
    """(private_pem, public_pem) of the key the test issuer signs with."""
    return _generate_keypair()


@pytest.fixture(scope="session")
def other_rsa_keypair():
    """A second, unrelated key pair for bad-signature cases."""
    return _generate_keypair()


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = note
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def key_engine():
    return KeyDerivationEngine(b"test-root-secret-not-for-production")


@pytest.fixture
def make_token(rsa_keypair):
    """
    Factory for signed ID tokens.

    make_token(sub="u1", exp_offset=-10) → an expired token for "u1".
    Pass `private_pem`/`kid`/`algorithm` to forge the other failure modes.
    """
    private_pem, _ = rsa_keypair

    def _make(
        sub: Optional[str] = "google-oauth2|12345",
        aud: str = TEST_AUDIENCE,
        iss: str = TEST_ISSUER,
        iat_offset: int = 0,
        exp_offset: int = 3600,
        kid: Optional[str] = TEST_KID,
        private_pem_override: Optional[str] = None,
        algorithm: str = "RS256",
        **extra_claims,
    ) -> str:
        now = int(time.time())
        claims = {
            "aud": aud,
            "iss": iss,
            "iat": now + iat_offset,
            "exp": now + exp_offset,
            "email": "alice@example.com",
            "name": "Alice",
        }
        if sub is not None:
            claims["sub"] = sub
        claims.update(extra_claims)
        headers = {"kid": kid} if kid else {}
        key = private_pem_override or private_pem
        return jwt.encode(claims, key, algorithm=algorithm, headers=headers)

    return _make


@pytest.fixture
def static_resolver(rsa_keypair):
    _, public_pem = rsa_keypair
    return StaticKeyResolver({TEST_KID: public_pem})


@pytest.fixture
def memory_store():
    return InMemoryUserStore()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient bound to the ASGI app (no network, no lifespan).

    Dependency overrides set by a test are cleared afterwards.
    """
    from app.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
