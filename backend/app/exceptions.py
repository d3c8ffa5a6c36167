"""
Noterverse Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for every failure the API can report.
Why:   Targeted handling with the right HTTP status, and a guarantee that
       internal detail (token claims, key ids, SQL) stays in the logs.
How:   Each exception carries a client-safe message and an optional context
       dict. Global handlers registered in main.py log the context and
       return structured JSON without it.

Exception Hierarchy:
    NoterverseError (base)
    ├── ConfigurationError       → startup abort (never reaches a client)
    ├── AuthError                → 401 Unauthorized
    │   └── TokenError           → 401 (code "invalid_token")
    ├── KeyResolutionError       → 503 Service Unavailable (identity provider down)
    ├── CircuitBreakerOpenError  → 503 Service Unavailable (breaker open)
    ├── DecryptionError          → 500 (generic, no detail)
    ├── ResolutionConflict       → internal only, recovered by the user resolver
    ├── ValidationError          → 400 Bad Request
    ├── NotFoundError            → 404 Not Found
    └── DatabaseError            → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class NoterverseError(Exception):
    """
    Base exception for all Noterverse application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(NoterverseError):
    """
    Raised when the process is started without required configuration.

    What:    Missing/empty/placeholder root secret, missing audience or issuer.
    When:    During startup, from Settings validation or the key engine constructor.
    Effect:  The lifespan handler lets it propagate, so uvicorn refuses to start.
    """

    def __init__(
        self,
        message: str = "Required configuration is missing",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthError(NoterverseError):
    """
    Raised when a request cannot be authenticated.

    HTTP:    401 Unauthorized with `WWW-Authenticate: Bearer`
    Codes:
        missing_token  — no Authorization header, or not a Bearer credential
        invalid_token  — a token was presented but failed verification
    """

    def __init__(
        self,
        code: str = "invalid_token",
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        if message is None:
            message = (
                "Authentication required"
                if code == "missing_token"
                else "The provided credentials are invalid or expired"
            )
        super().__init__(message=message, context=context)


class TokenError(AuthError):
    """
    Raised by the Identity Verifier for any token that cannot be trusted.

    What:    Malformed, unsigned, badly signed, expired, wrong issuer/audience,
             future-dated, or missing its subject.
    Why one type: The client gets the same answer for every case. The
             specific `reason` goes to the log via context only.
    Retry:   Never retried; the client must obtain a fresh token.
    """

    def __init__(self, reason: str = "invalid", context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["reason"] = reason
        super().__init__(code="invalid_token", context=ctx)
        self.reason = reason


class KeyResolutionError(NoterverseError):
    """
    Raised when the issuer's signing keys cannot be fetched.

    What:    JWKS endpoint unreachable or returned garbage after retries.
    HTTP:    503 Service Unavailable. The token may be fine; we just cannot
             check it right now.
    """

    def __init__(
        self,
        message: str = "Sign-in is temporarily unavailable. Please try again shortly.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(KeyResolutionError):
    """
    Raised when the identity provider circuit breaker is OPEN.

    After cb_failure_threshold consecutive JWKS fetch failures, fetches are
    refused for cb_recovery_timeout seconds instead of piling up timeouts.
    """

    def __init__(
        self,
        recovery_time: int = 30,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                "Sign-in is temporarily unavailable due to repeated failures. "
                f"Please retry in approximately {recovery_time} seconds."
            ),
            retry_after=recovery_time,
            context=ctx,
        )
        self.recovery_time = recovery_time


class DecryptionError(NoterverseError):
    """
    Raised when a note envelope fails authentication or is malformed.

    Security Note:
        Wrong key, tampered ciphertext, truncated envelope and corrupted
        nonce all raise this same type with this same message. Distinguishing
        them would give an attacker a decryption oracle. Operators get the
        user id and note id from the server log instead.
    HTTP:    500 with a generic server_error body.
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Unable to decrypt data", context=context)


class ResolutionConflict(NoterverseError):
    """
    Raised by a UserStore when inserting a user hits the external id
    uniqueness constraint. Internal and transient: the User Resolver catches
    it and re-fetches the row that won the race.
    """

    def __init__(self, external_id: str = "", context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        super().__init__(message="User was created concurrently", context=ctx)
        self.external_id = external_id


class ValidationError(NoterverseError):
    """
    Raised when client input fails a business rule.

    When:    Note content too large, too many tags, empty update.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(NoterverseError):
    """
    Raised when a requested resource does not exist for the caller.

    A note owned by another user is reported exactly like a missing note,
    so note ids cannot be probed across accounts.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(NoterverseError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; SQL and constraint
    names are logged server-side only.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
