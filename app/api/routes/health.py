"""
Health Check Endpoints

Liveness, basic health and an OpenDental readiness check.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.core.scheduling.errors import GatewayUnavailable
from app.core.scheduling.gateway import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "0.1.0"

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: Optional[float] = None


class ReadyResponse(BaseModel):
    """Readiness of the scheduling backends."""
    status: str
    timestamp: datetime
    checks: dict[str, str]
    providers: Optional[int] = None


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not call OpenDental.",
)
async def health() -> HealthResponse:
    """
    Basic health check.

    The OpenDental API is not called here; use /health/ready for that.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    description="Lists providers through the OpenDental API. Returns 503 when it is unreachable.",
    responses={
        200: {"description": "OpenDental answered and an Anthropic key is configured"},
        503: {"description": "OpenDental is unreachable or a key is missing"},
    },
)
async def ready(gateway=Depends(get_gateway)):
    """
    Readiness check.

    Checks:
    - OpenDental answers GetProviders
    - An Anthropic API key is configured (not called)
    """
    checks = {}
    provider_count = None

    try:
        providers = await gateway.list_providers()
        provider_count = len([p for p in providers if p.is_active])
        checks["opendental"] = "ok"
    except GatewayUnavailable as e:
        checks["opendental"] = "unavailable"
        logger.warning(f"Readiness check: {e}")

    checks["anthropic"] = "configured" if settings.anthropic_api_key else "missing"

    all_ok = checks["opendental"] == "ok" and checks["anthropic"] == "configured"
    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        providers=provider_count,
    )

    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def live() -> LiveResponse:
    """Always 200 while the process is running."""
    return LiveResponse(status="alive", timestamp=datetime.now(timezone.utc))
