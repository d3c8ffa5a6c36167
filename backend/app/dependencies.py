"""
Noterverse Backend — FastAPI Dependencies
===========================================

What:  Builds the long-lived security components and the per-request auth dependency.
Why:   Routes declare `auth: AuthContext = Depends(require_auth)` and never
       touch tokens, users or keys directly.
How:   Process-wide singletons (key resolver, key engine, gate) are built once
       via lru_cache and eagerly during startup, so configuration errors stop
       the process instead of failing the first request.
       The user resolver is per request because it writes through the
       request's database session.

Testing:
    Every function here is a FastAPI dependency and can be replaced with
    app.dependency_overrides[...] (see tests/test_api.py).
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.services.auth_gate import AuthAttempt, AuthContext, RequestAuthorizationGate
from app.services.identity_verifier import IdentityVerifier
from app.services.key_derivation import KeyCache, KeyDerivationEngine
from app.services.key_resolver import GoogleKeyResolver, KeyResolver
from app.services.user_resolver import SqlAlchemyUserStore, UserResolver


@lru_cache
def get_key_resolver() -> KeyResolver:
    return GoogleKeyResolver()


@lru_cache
def get_key_engine() -> KeyDerivationEngine:
    """
    Raises:
        ConfigurationError: ROOT_SECRET empty (startup aborts)
    """
    return KeyDerivationEngine(
        settings.root_secret.get_secret_value().encode("utf-8"),
        cache=KeyCache(max_entries=settings.key_cache_max_entries),
    )


@lru_cache
def get_authorization_gate() -> RequestAuthorizationGate:
    verifier = IdentityVerifier(
        key_resolver=get_key_resolver(),
        audience=settings.google_client_id,
        issuers=settings.token_issuers_list,
        clock_skew_seconds=settings.clock_skew_seconds,
    )
    return RequestAuthorizationGate(verifier=verifier, key_engine=get_key_engine())


def get_user_resolver(db: AsyncSession = Depends(get_db_session)) -> UserResolver:
    return UserResolver(SqlAlchemyUserStore(db))


async def require_auth(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    gate: RequestAuthorizationGate = Depends(get_authorization_gate),
    user_resolver: UserResolver = Depends(get_user_resolver),
) -> AuthContext:
    """
    Per-request authorization.

    The resulting AuthContext is the only source of user id and key for the
    route; request.state gets the user id (never the key) for access logs.
    """
    attempt = AuthAttempt()
    request.state.auth_attempt = attempt
    context = await gate.authorize(authorization, user_resolver, attempt)
    request.state.user_id = str(context.user_id)
    return context
