"""
Noterverse Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer probes.
Why:   Load balancers route away from instances that cannot serve requests.
How:   Checks the database and the identity provider key resolver.

Status levels:
    - healthy:   Database reachable, signing keys loaded or loadable
    - degraded:  Identity provider circuit open (existing sign-ins fail, DB fine)
    - unhealthy: Database unreachable (HTTP 503)

No authentication: this route never touches user data or keys.
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from app import __version__
from app.dependencies import get_key_resolver
from app.schemas.note import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    idp_status = "available"
    overall = "healthy"

    try:
        from app.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    try:
        idp_status = await get_key_resolver().health_check()
        if idp_status == "circuit_open" and overall != "unhealthy":
            overall = "degraded"
    except Exception as e:
        idp_status = "unavailable"
        overall = "degraded" if overall != "unhealthy" else overall
        logger.warning("Health check: key resolver error: %s", str(e))

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        identity_provider=idp_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
