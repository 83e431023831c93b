"""Tests for the WhatsApp Cloud API client."""

from unittest.mock import AsyncMock

import httpx
import pytest

from medimate.infra.whatsapp import WhatsAppClient

MESSAGES_URL = "https://graph.facebook.com/v19.0/1098765/messages"


def graph_response(status_code: int, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", MESSAGES_URL), **kwargs)


class TestWhatsAppClient:
    """Test outbound text messages."""

    @pytest.fixture
    def client(self):
        """Create client with credentials."""
        return WhatsAppClient(
            access_token="token-123",
            phone_number_id="1098765",
            api_version="v19.0",
        )

    @pytest.fixture
    def mock_httpx_client(self):
        """Create mock httpx client."""
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_send_text(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(
            return_value=graph_response(200, json={"messages": [{"id": "wamid.ABC"}]})
        )
        client._client = mock_httpx_client

        result = await client.send("15551112222", "Your appointment is confirmed.")

        assert result.success
        assert result.message_id == "wamid.ABC"
        args, kwargs = mock_httpx_client.post.call_args
        assert args == ("/v19.0/1098765/messages",)
        assert kwargs["headers"] == {"Authorization": "Bearer token-123"}
        assert kwargs["json"] == {
            "messaging_product": "whatsapp",
            "to": "15551112222",
            "type": "text",
            "text": {"preview_url": False, "body": "Your appointment is confirmed."},
        }

    @pytest.mark.asyncio
    async def test_http_error_reported(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(return_value=graph_response(401, text="invalid token"))
        client._client = mock_httpx_client

        result = await client.send("15551112222", "hi")

        assert not result.success
        assert result.error == "HTTP 401: invalid token"

    @pytest.mark.asyncio
    async def test_network_error_reported(self, client, mock_httpx_client):
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        client._client = mock_httpx_client

        result = await client.send("15551112222", "hi")

        assert not result.success
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client, mock_httpx_client):
        client._client = mock_httpx_client
        client.access_token = ""

        result = await client.send("15551112222", "hi")

        assert not result.success
        assert result.error == "WhatsApp credentials are not configured"
        mock_httpx_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_releases_http_client(self, client, mock_httpx_client):
        client._client = mock_httpx_client

        await client.close()

        mock_httpx_client.aclose.assert_awaited_once()
        assert client._client is None
