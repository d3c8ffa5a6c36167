"""
Noterverse Backend — Identity Verifier
========================================

What:  Validates a Google-issued ID token and extracts the user's identity.
Why:   Every note operation is keyed on *who* is asking. That answer must
       come from a token whose signature and claims we checked ourselves.
How:   python-jose verifies the RS256 signature against the key supplied by
       a KeyResolver, plus issuer, audience and expiry. We add the checks
       jose leaves out: issued-at not in the future and a non-empty subject.
Who:   Called by the Request Authorization Gate once per request.

Verification Steps:
    1. Parse the unverified header → kid, alg (only RS256 accepted)
    2. Resolve kid → public key (may fetch JWKS; may suspend)
    3. jose.jwt.decode: signature, iss ∈ issuers, aud == client id, exp (+leeway)
    4. iat present and not more than clock_skew_seconds in the future
    5. sub present and non-empty

Any failure raises TokenError. There is no partially trusted token.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from app.exceptions import TokenError
from app.services.key_resolver import KeyResolver

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ["RS256"]


@dataclass(frozen=True)
class VerifiedIdentity:
    """Result of a successful verification. `claims` is the full payload."""

    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, repr=False)


class IdentityVerifier:
    """
    Pure verification: no writes, no caching of its own (the resolver caches keys).
    """

    def __init__(
        self,
        key_resolver: KeyResolver,
        audience: str,
        issuers: Iterable[str],
        clock_skew_seconds: int = 300,
    ):
        self.key_resolver = key_resolver
        self.audience = audience
        self.issuers = tuple(issuers)
        self.clock_skew_seconds = clock_skew_seconds

    async def verify(self, token: str) -> VerifiedIdentity:
        """
        Raises:
            TokenError: the token cannot be trusted, for any reason
            KeyResolutionError: the issuer's keys could not be fetched
        """
        if not token or token.count(".") != 2:
            raise TokenError("malformed")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise TokenError("malformed_header") from None

        if header.get("alg") not in ALLOWED_ALGORITHMS:
            raise TokenError("unsupported_algorithm", context={"alg": header.get("alg")})

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenError("missing_kid")

        key = await self.key_resolver.get_signing_key(kid)
        if key is None:
            raise TokenError("unknown_kid", context={"kid": kid})

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuers,
                options={
                    "leeway": self.clock_skew_seconds,
                    "require_exp": True,
                    "require_iat": True,
                    "require_sub": True,
                    # ID tokens arrive without the access token at_hash refers to
                    "verify_at_hash": False,
                },
            )
        except ExpiredSignatureError:
            raise TokenError("expired") from None
        except JWTClaimsError as e:
            raise TokenError("bad_claims", context={"detail": str(e)}) from None
        except JWTError:
            raise TokenError("bad_signature") from None

        self._check_issued_at(claims)

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise TokenError("missing_subject")

        return VerifiedIdentity(
            external_id=subject,
            email=claims.get("email"),
            name=claims.get("name"),
            claims=claims,
        )

    def _check_issued_at(self, claims: Dict[str, Any]) -> None:
        iat = claims.get("iat")
        if not isinstance(iat, (int, float)) or isinstance(iat, bool):
            raise TokenError("missing_iat")
        if iat > time.time() + self.clock_skew_seconds:
            raise TokenError("issued_in_future")
