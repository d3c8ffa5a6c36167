"""
Noterverse Backend — Identity Provider Key Resolution
=======================================================

What:  Supplies the issuer's public signing key (JWK) for a token's `kid`.
Why:   Token signatures are checked against keys Google publishes and rotates.
       The verifier should not care where those keys come from.
How:   `KeyResolver` is the capability interface the Identity Verifier
       depends on. `GoogleKeyResolver` fetches the JWKS document over HTTPS,
       caches it for the response's max-age, and refreshes early when a
       token names a kid it has not seen (Google rotated its keys).

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker so an identity provider outage fails sign-ins fast
       instead of stacking up timeouts on every request
    3. A single asyncio.Lock around refreshes: N concurrent requests with a
       stale cache trigger one fetch, not N
    4. Forced refreshes for unknown kids are rate limited, so garbage tokens
       cannot make us hammer the JWKS endpoint
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from app.config import settings
from app.exceptions import CircuitBreakerOpenError, KeyResolutionError

logger = logging.getLogger(__name__)

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")

# Minimum seconds between refreshes triggered by an unknown kid
UNKNOWN_KID_REFRESH_INTERVAL = 60


class KeyResolver(ABC):
    """
    Capability: resolve a signing key id to a public key.

    Implementations return a JWK dict (or PEM string) usable by
    `jose.jwt.decode`, or None when the issuer has no such key.
    Raise KeyResolutionError when the key set cannot be obtained at all.
    """

    @abstractmethod
    async def get_signing_key(self, kid: str) -> Optional[Any]:
        ...

    async def health_check(self) -> str:
        """Short status string for /health."""
        return "available"


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → (threshold consecutive failures) → OPEN
    OPEN → (recovery_timeout elapsed) → HALF_OPEN, one trial fetch allowed
    HALF_OPEN → success → CLOSED; failure → OPEN again

    Single process, single event loop: plain attributes are enough.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 30):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout has not elapsed.
        """
        if self.state != self.OPEN:
            return True

        elapsed = time.monotonic() - (self.last_failure_time or 0)
        if elapsed >= self.recovery_timeout:
            logger.info("JWKS circuit breaker HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
            return True
        raise CircuitBreakerOpenError(recovery_time=max(1, int(self.recovery_timeout - elapsed)))

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("JWKS circuit breaker CLOSED (identity provider recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("JWKS circuit breaker back to OPEN (trial fetch failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "JWKS circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Google JWKS Resolver
# ══════════════════════════════════════════════════════════════════════════

class GoogleKeyResolver(KeyResolver):
    """
    Fetches and caches Google's OAuth2 signing keys.

    Args:
        jwks_url: Key set location (default from settings)
        client: Optional shared httpx.AsyncClient; tests inject one backed
                by httpx.MockTransport
        max_attempts / min_wait / max_wait: Retry policy per refresh
    """

    def __init__(
        self,
        jwks_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl: Optional[int] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.jwks_url = jwks_url or settings.jwks_url
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.jwks_cache_ttl
        self.timeout = timeout if timeout is not None else settings.jwks_fetch_timeout
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.min_wait = min_wait if min_wait is not None else settings.retry_min_wait
        self.max_wait = max_wait if max_wait is not None else settings.retry_max_wait
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        self._client = client
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._expires_at = 0.0
        self._last_forced_refresh = float("-inf")
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return bool(self._keys) and time.monotonic() < self._expires_at

    async def get_signing_key(self, kid: str) -> Optional[Dict[str, Any]]:
        if self._is_fresh() and kid in self._keys:
            return self._keys[kid]

        async with self._lock:
            # Another request may have refreshed while we waited
            if not self._is_fresh():
                await self.refresh()
            elif kid not in self._keys:
                now = time.monotonic()
                if now - self._last_forced_refresh >= UNKNOWN_KID_REFRESH_INTERVAL:
                    self._last_forced_refresh = now
                    logger.info("Unknown signing key id; refreshing JWKS early")
                    await self.refresh()

        return self._keys.get(kid)

    async def refresh(self) -> None:
        """
        Fetch the key set and replace the cache.

        Raises:
            CircuitBreakerOpenError: too many recent failures
            KeyResolutionError: fetch failed after all retries
        """
        self.circuit_breaker.can_execute()
        try:
            keys, ttl = await self._fetch_with_retry()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            self.circuit_breaker.record_failure()
            logger.error("JWKS fetch from %s failed: %s", self.jwks_url, e)
            raise KeyResolutionError(
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"jwks_url": self.jwks_url, "error_type": type(e).__name__},
            ) from e

        self.circuit_breaker.record_success()
        self._keys = keys
        self._expires_at = time.monotonic() + ttl
        logger.info("JWKS refreshed: %d keys, cached for %ds", len(keys), ttl)

    async def _fetch_with_retry(self):
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_wait, max=self.max_wait)
            + wait_random(0, self.min_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._fetch_once()

    async def _fetch_once(self):
        start = time.perf_counter()
        if self._client is not None:
            response = await self._client.get(self.jwks_url, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.jwks_url)
        response.raise_for_status()

        document = response.json()
        keys = {
            jwk["kid"]: jwk
            for jwk in document["keys"]
            if isinstance(jwk, dict) and jwk.get("kid")
        }
        if not keys:
            raise ValueError("JWKS document contains no usable keys")

        logger.debug("JWKS fetched in %.0fms", (time.perf_counter() - start) * 1000)
        return keys, self._ttl_from(response)

    def _ttl_from(self, response: httpx.Response) -> int:
        match = _MAX_AGE_RE.search(response.headers.get("cache-control", ""))
        if match:
            return int(match.group(1))
        return self.cache_ttl

    async def health_check(self) -> str:
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available" if self._is_fresh() else "not_loaded"
