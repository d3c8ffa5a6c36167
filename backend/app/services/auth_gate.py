"""
Noterverse Backend — Request Authorization Gate
=================================================

What:  Turns an Authorization header into (user, per-user key), or rejects.
Why:   One place decides whose key a request uses. Note operations never
       derive keys or pick user ids themselves.
How:   A strictly sequential pipeline; each step's output gates the next.

State Machine (per request):
    UNAUTHENTICATED ──no/malformed bearer──────────────────────▶ REJECTED (missing_token)
          │
          ├──verify fails─────────────────────────────────────▶ REJECTED (invalid_token)
          ▼
       VERIFIED ──resolve user──▶ RESOLVED ──derive key──▶ KEYED ──▶ AUTHORIZED
          │
          └──resolve or derive fails (e.g. DatabaseError)─────────▶ REJECTED

    The user resolver is never invoked for a token that failed verification,
    so rejected requests cannot create users.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.exceptions import AuthError, KeyResolutionError, TokenError
from app.services.identity_verifier import IdentityVerifier
from app.services.key_derivation import DerivedKey, KeyDerivationEngine
from app.services.user_resolver import ResolvedUser, UserResolver

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    VERIFIED = "verified"
    RESOLVED = "resolved"
    KEYED = "keyed"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthContext:
    """What downstream note operations are allowed to use. Nothing else."""

    user: ResolvedUser
    key: DerivedKey = field(repr=False)

    @property
    def user_id(self):
        return self.user.id


@dataclass
class AuthAttempt:
    """Trace of one pass through the gate."""

    state: AuthState = AuthState.UNAUTHENTICATED
    history: List[AuthState] = field(default_factory=lambda: [AuthState.UNAUTHENTICATED])
    context: Optional[AuthContext] = None
    error: Optional[Exception] = None

    def advance(self, state: AuthState) -> None:
        self.state = state
        self.history.append(state)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """`Bearer <token>` → token. Scheme is case-insensitive; anything else → None."""
    if not authorization:
        return None
    parts = authorization.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class RequestAuthorizationGate:
    """
    Built once at startup with the verifier and key engine; the user
    resolver is per request because it is bound to the request's session.
    """

    def __init__(self, verifier: IdentityVerifier, key_engine: KeyDerivationEngine):
        self.verifier = verifier
        self.key_engine = key_engine

    async def authorize(
        self,
        authorization: Optional[str],
        user_resolver: UserResolver,
        attempt: Optional[AuthAttempt] = None,
    ) -> AuthContext:
        """
        Run the pipeline and return the AuthContext.

        Raises:
            AuthError("missing_token"): no usable bearer credential
            TokenError (AuthError "invalid_token"): verification failed
            KeyResolutionError: identity provider keys unavailable
            DatabaseError: the user could not be resolved
        """
        attempt = attempt if attempt is not None else AuthAttempt()

        token = extract_bearer_token(authorization)
        if token is None:
            raise self._rejected(attempt, AuthError("missing_token"))

        try:
            identity = await self.verifier.verify(token)
        except TokenError as e:
            logger.warning("Token rejected: %s", e.reason)
            raise self._rejected(attempt, e)
        except KeyResolutionError as e:
            logger.error("Token could not be checked: identity provider keys unavailable")
            raise self._rejected(attempt, e)
        attempt.advance(AuthState.VERIFIED)

        try:
            user = await user_resolver.resolve(identity)
            attempt.advance(AuthState.RESOLVED)

            key = self.key_engine.key_for(user.id, identity.external_id)
            attempt.advance(AuthState.KEYED)
        except Exception as e:
            logger.error("Authorization failed after verification: %s", type(e).__name__)
            raise self._rejected(attempt, e)

        context = AuthContext(user=user, key=key)
        attempt.context = context
        attempt.advance(AuthState.AUTHORIZED)
        logger.debug("Request authorized for user %s", user.id)
        return context

    @staticmethod
    def _rejected(attempt: AuthAttempt, error: Exception) -> Exception:
        attempt.error = error
        attempt.advance(AuthState.REJECTED)
        return error
