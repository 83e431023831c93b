"""
WhatsApp Cloud API client.

Sends plain text messages through the Graph API. Sending never raises:
failures come back as a SendResult so callers can report them separately
from processing errors.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from medimate.config import get_settings

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


@dataclass
class SendResult:
    """Outcome of a send attempt."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class WhatsAppClient:
    """HTTP client for the WhatsApp Cloud API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: float = 15.0,
    ):
        """Initialize client.

        Args:
            access_token: Graph API token (defaults to settings)
            phone_number_id: Sending phone number ID (defaults to settings)
            api_version: Graph API version (defaults to settings)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.access_token = access_token or settings.whatsapp_access_token
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        self.api_version = api_version or settings.whatsapp_api_version
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GRAPH_API_BASE,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, recipient: str, text: str) -> SendResult:
        """
        Send a text message.

        Args:
            recipient: WhatsApp ID (phone number without +)
            text: Message body

        Returns:
            SendResult with success flag and error description
        """
        if not self.access_token or not self.phone_number_id:
            logger.error("WhatsApp credentials are not configured")
            return SendResult(success=False, error="WhatsApp credentials are not configured")

        payload = {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }

        client = await self._get_client()

        try:
            response = await client.post(
                f"/{self.api_version}/{self.phone_number_id}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()

            data = response.json()
            messages = data.get("messages") or [{}]
            message_id = messages[0].get("id")
            logger.info(f"WhatsApp message sent to {recipient}: {message_id}")
            return SendResult(success=True, message_id=message_id)

        except httpx.HTTPStatusError as e:
            detail = e.response.text[:300]
            logger.error(f"WhatsApp send to {recipient} failed ({e.response.status_code}): {detail}")
            return SendResult(success=False, error=f"HTTP {e.response.status_code}: {detail}")

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"WhatsApp send to {recipient} failed: {e}")
            return SendResult(success=False, error=str(e))


# Singleton
_client: Optional[WhatsAppClient] = None


def get_whatsapp_client() -> WhatsAppClient:
    """Get singleton WhatsAppClient."""
    global _client
    if _client is None:
        _client = WhatsAppClient()
    return _client


async def close_whatsapp_client() -> None:
    """Close the singleton's HTTP connection pool, if one was opened."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
