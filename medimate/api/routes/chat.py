"""
Chat Simulator Endpoint.

Runs a message through the same orchestrator the webhook uses, but
returns the reply instead of sending it over WhatsApp. Used by the
local chat UI and for manual testing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from medimate.core.intelligence.session.manager import get_context_store
from medimate.core.scheduling.engine import TurnResult, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Message text",
        examples=["I'd like to book an appointment for 2025-03-10 at 2pm"],
    )
    sender_id: str = Field(
        ...,
        min_length=1,
        description="Simulated WhatsApp sender id (the doctor's number runs doctor commands)",
        examples=["15551234567"],
    )
    sender_name: Optional[str] = Field(
        default=None,
        description="Profile name recorded on new appointments",
    )


class ChatResponse(BaseModel):
    """Chat response."""

    message: str = Field(..., description="Reply text")
    state: str = Field(..., description="Conversation state after the turn")
    intent: Optional[str] = Field(default=None, description="Intent the turn was handled as")
    committed: bool = Field(default=False, description="Whether the turn changed the schedule")
    error: Optional[str] = Field(default=None, description="Error kind, if the turn was rejected")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Process a message as if it came from WhatsApp and return the reply.",
    responses={
        200: {"description": "Successful response"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def chat(request: ChatRequest) -> ChatResponse:
    """Process a chat message without sending the reply."""
    try:
        result: TurnResult = await get_orchestrator().handle_message(
            sender_id=request.sender_id,
            message_text=request.message,
            sender_name=request.sender_name,
        )
    except Exception as e:
        logger.exception(f"[{request.sender_id}] Error processing chat message: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process message",
        )

    return ChatResponse(
        message=result.response_text,
        state=result.state.value,
        intent=result.intent.value if result.intent else None,
        committed=result.committed,
        error=result.error.value if result.error else None,
    )


@router.get(
    "/context/{sender_id}",
    response_model=dict,
    summary="Get conversation context",
    description="Retrieve the current slot-filling state for a sender.",
)
async def get_context(sender_id: str) -> dict:
    """Get a sender's conversation context."""
    context = await get_context_store().get(sender_id)
    return {
        "sender_id": context.sender_id,
        "state": context.state.value,
        "last_intent": context.last_intent.value,
        "gathered_date": context.gathered_date,
        "gathered_time": context.gathered_time,
        "gathered_reason": context.gathered_reason,
        "contextual_date": context.contextual_date,
        "reschedule_patient_name": context.reschedule_patient_name,
        "reschedule_new_date": context.reschedule_new_date,
        "reschedule_new_time": context.reschedule_new_time,
        "parse_failures": context.parse_failures,
        "updated_at": context.updated_at.isoformat(),
    }


@router.delete(
    "/context/{sender_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset a conversation",
    description="Drop a sender's conversation context.",
)
async def reset_context(sender_id: str) -> None:
    """Reset a sender's conversation."""
    store = get_context_store()
    async with store.lock(sender_id):
        await store.delete(sender_id)
    logger.info(f"[{sender_id}] Conversation context reset")
