"""
Scheduled Job Endpoints.

Called by an external scheduler. Protected by CRON_SECRET as a bearer
token when one is configured.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel

from medimate.config import settings
from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.summary import get_summary_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


class DailySummaryResponse(BaseModel):
    """Daily summary outcome."""

    message: str
    appointment_count: int


def check_cron_auth(authorization: Optional[str]) -> None:
    """Raise 401 unless the bearer token matches CRON_SECRET (when set)."""
    if not settings.cron_secret:
        return
    if authorization != f"Bearer {settings.cron_secret}":
        logger.warning("Daily summary cron: unauthorized access attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


@router.get(
    "/daily-summary",
    response_model=DailySummaryResponse,
    summary="Send the doctor's daily summary",
    responses={
        401: {"description": "Missing or wrong bearer token"},
        500: {"description": "Summary could not be built or sent"},
    },
)
async def daily_summary(
    authorization: Optional[str] = Header(default=None),
) -> DailySummaryResponse:
    """Send today's booked appointments to the doctor."""
    check_cron_auth(authorization)

    if not settings.doctor_phone_number:
        logger.error("Daily summary cron: DOCTOR_PHONE_NUMBER is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Doctor WhatsApp number not configured",
        )

    try:
        result = await get_summary_service().send_daily_summary()
    except ExternalServiceError as e:
        logger.error(f"Daily summary cron: could not read appointments: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not read appointments",
        )

    if not result.sent:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send summary via WhatsApp: {result.error}",
        )

    if result.appointment_count == 0:
        text = "No appointments today, summary sent."
    else:
        text = "Daily summary sent successfully."
    return DailySummaryResponse(message=text, appointment_count=result.appointment_count)
