"""
WhatsApp Webhook Endpoints.

GET answers Meta's subscription handshake. POST receives message
notifications and runs each text message through the orchestrator, which
sends the reply.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from medimate.config import settings
from medimate.core.scheduling.engine import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])

WHATSAPP_OBJECT = "whatsapp_business_account"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class TextBody(_Payload):
    body: str = ""


class InboundMessage(_Payload):
    """One entry of value.messages[]."""

    id: Optional[str] = None
    sender: str = Field(..., alias="from")
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[TextBody] = None


class ContactProfile(_Payload):
    name: Optional[str] = None


class Contact(_Payload):
    wa_id: Optional[str] = None
    profile: Optional[ContactProfile] = None


class ChangeValue(_Payload):
    messages: list[InboundMessage] = Field(default_factory=list)
    contacts: list[Contact] = Field(default_factory=list)

    def name_for(self, wa_id: str) -> Optional[str]:
        """Profile name of a sender, if the notification carries one."""
        for contact in self.contacts:
            if contact.profile and (contact.wa_id in (None, wa_id)):
                return contact.profile.name
        return None


class Change(_Payload):
    field: Optional[str] = None
    value: ChangeValue = Field(default_factory=ChangeValue)


class Entry(_Payload):
    id: Optional[str] = None
    changes: list[Change] = Field(default_factory=list)


class WebhookNotification(_Payload):
    """Top-level WhatsApp Cloud API notification."""

    object: str
    entry: list[Entry] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    """Webhook acknowledgement."""

    status: str
    processed: int = 0
    skipped: int = 0
    delivery_failures: int = 0


@router.get(
    "/whatsapp",
    response_class=PlainTextResponse,
    summary="Verify webhook subscription",
    responses={403: {"description": "Verification failed"}},
)
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    """Echo the challenge when the verify token matches."""
    if (
        hub_mode == "subscribe"
        and settings.whatsapp_verify_token
        and hub_verify_token == settings.whatsapp_verify_token
    ):
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(hub_challenge or "")

    logger.warning("WhatsApp webhook verification failed (check WHATSAPP_VERIFY_TOKEN)")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Failed verification",
    )


@router.post(
    "/whatsapp",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Receive WhatsApp messages",
    responses={400: {"description": "Not a WhatsApp notification"}},
)
async def receive_webhook(notification: WebhookNotification) -> WebhookResponse:
    """
    Process every text message in the notification.

    Non-text messages are logged and skipped. Each message is answered
    independently; a failure on one never blocks the others.
    """
    if notification.object != WHATSAPP_OBJECT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Not a WhatsApp event",
        )

    orchestrator = get_orchestrator()
    processed = skipped = delivery_failures = 0

    for entry in notification.entry:
        for change in entry.changes:
            if change.field not in (None, "messages"):
                continue
            for message in change.value.messages:
                if message.type != "text" or message.text is None:
                    logger.info(f"[{message.sender}] Skipping non-text message of type {message.type}")
                    skipped += 1
                    continue

                report = await orchestrator.handle_and_reply(
                    sender_id=message.sender,
                    message_text=message.text.body,
                    message_id=message.id,
                    timestamp=message.timestamp,
                    sender_name=change.value.name_for(message.sender),
                )
                processed += 1
                if not report.sent:
                    delivery_failures += 1

    return WebhookResponse(
        status="success",
        processed=processed,
        skipped=skipped,
        delivery_failures=delivery_failures,
    )
