from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from concierge.channels.whatsapp import WhatsAppAdapter
from concierge.core.conversations import DeliveryStatus


def _payload(value: dict) -> dict:
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA", "changes": [{"value": value}]}]}


def test_parse_text_message_with_contact_name():
    value = {
        "metadata": {"phone_number_id": "1098765"},
        "contacts": [{"wa_id": "18085550100", "profile": {"name": "Leilani"}}],
        "messages": [
            {"from": "18085550100", "id": "wamid.1", "timestamp": "1760000000", "type": "text", "text": {"body": "Aloha"}}
        ],
    }
    [parsed] = WhatsAppAdapter.parse_webhook(_payload(value))
    assert parsed.routing_key == "1098765"
    [msg] = parsed.messages
    assert msg.text == "Aloha"
    assert msg.sender_name == "Leilani"
    assert msg.provider_message_id == "wamid.1"
    assert msg.timestamp is not None


def test_parse_interactive_and_media_messages():
    value = {
        "metadata": {"phone_number_id": "1098765"},
        "messages": [
            {"from": "1", "id": "a", "type": "interactive", "interactive": {"button_reply": {"title": "Book now"}}},
            {"from": "1", "id": "b", "type": "image", "image": {"caption": "our room"}},
            {"from": "1", "id": "c", "type": "sticker", "sticker": {}},
        ],
    }
    [parsed] = WhatsAppAdapter.parse_webhook(_payload(value))
    assert [m.text for m in parsed.messages] == ["Book now", "our room", "[sticker]"]


def test_parse_statuses():
    value = {
        "metadata": {"phone_number_id": "1098765"},
        "statuses": [
            {"id": "wamid.9", "status": "delivered", "timestamp": "1760000000"},
            {"id": "wamid.9", "status": "read"},
            {"id": "wamid.9", "status": "failed", "errors": [{"title": "Re-engagement message"}]},
            {"id": "wamid.9", "status": "deleted"},
        ],
    }
    [parsed] = WhatsAppAdapter.parse_webhook(_payload(value))
    assert [s.status for s in parsed.statuses] == [DeliveryStatus.DELIVERED, DeliveryStatus.READ, DeliveryStatus.FAILED]
    assert parsed.statuses[2].error == "Re-engagement message"
    assert parsed.messages == []


def test_parse_empty_payload():
    assert WhatsAppAdapter.parse_webhook({}) == []


def test_verify_handshake():
    assert WhatsAppAdapter.verify_handshake("subscribe", "tok", "1234", "tok") == "1234"
    assert WhatsAppAdapter.verify_handshake("subscribe", "bad", "1234", "tok") is None
    assert WhatsAppAdapter.verify_handshake("unsubscribe", "tok", "1234", "tok") is None
    assert WhatsAppAdapter.verify_handshake("subscribe", "", "1234", "") is None


def _mock_client(response: httpx.Response) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response)
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    return mock_client


@pytest.mark.asyncio
async def test_send_success_returns_wamid():
    adapter = WhatsAppAdapter({"phone_number_id": "1098765"}, {"access_token": "t"})
    response = httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})

    with patch("httpx.AsyncClient", return_value=_mock_client(response)):
        assert await adapter.send("18085550100", "Aloha") == "wamid.out"


@pytest.mark.asyncio
async def test_send_api_error_returns_none():
    adapter = WhatsAppAdapter({"phone_number_id": "1098765"}, {"access_token": "t"})
    response = httpx.Response(400, content=b"bad request")

    with patch("httpx.AsyncClient", return_value=_mock_client(response)):
        assert await adapter.send("18085550100", "Aloha") is None
