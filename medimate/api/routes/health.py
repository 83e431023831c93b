"""
Health Check Endpoints

Provides health, readiness, and liveness probes for monitoring and
load balancers.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from medimate.config import settings
from medimate.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

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


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


def configuration_checks() -> dict[str, str]:
    """Which required integrations have credentials configured."""
    return {
        "sheets": "ok" if settings.google_sheet_id and settings.google_sheets_client_email else "missing",
        "calendar": "ok" if settings.google_calendar_client_email else "missing",
        "whatsapp": (
            "ok" if settings.whatsapp_access_token and settings.whatsapp_phone_number_id else "missing"
        ),
        "anthropic": "ok" if settings.anthropic_api_key else "missing",
        "doctor": "ok" if settings.doctor_phone_number else "missing",
    }


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """
    Basic health check.

    Always returns 200 if the application is running.
    Use /health/ready for dependency checks.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description=(
        "Checks integration configuration and Redis connectivity. Returns 503 if a "
        "required integration is not configured."
    ),
    responses={
        200: {"description": "All required integrations are configured"},
        503: {"description": "One or more integrations are not configured"},
    },
)
async def ready() -> ReadyResponse:
    """
    Readiness probe for load balancers.

    Redis is reported but does not fail readiness: conversation context
    falls back to process memory while it is down.
    """
    checks = configuration_checks()
    all_ok = all(value == "ok" for value in checks.values())

    try:
        redis_ok = await check_redis_health()
        checks["redis"] = "ok" if redis_ok else "degraded"
        if not redis_ok:
            logger.warning("Readiness check: Redis unavailable, using in-memory context")
    except Exception as e:
        checks["redis"] = "error"
        logger.error(f"Readiness check: Redis error - {e}")

    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not all_ok:
        missing = [name for name, value in checks.items() if value == "missing"]
        logger.warning(f"Readiness check: not configured - {', '.join(missing)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 if the process is alive. Used for container restart decisions.",
)
async def live() -> LiveResponse:
    """Liveness probe. Always returns 200 if the process is running."""
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )
