"""
WhatsApp Cloud API Channel Adapter: webhook-based integration.

Setup:
1. Create a WhatsApp Business app in Meta for Developers
2. Subscribe the webhook to {public_base_url}/api/channels/whatsapp/webhook
   with the tenant's verify token
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from concierge.channels.base import ChannelAdapter, register_channel
from concierge.core.conversations import DeliveryStatus
from concierge.core.messages import DeliveryUpdate, IncomingMessage, ParsedWebhook

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v18.0"

_STATUS_MAP = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}


@register_channel("whatsapp")
class WhatsAppAdapter(ChannelAdapter):
    """
    WhatsApp Business Cloud API adapter.

    Config keys:
        phone_number_id: str - provider-assigned id of the receiving number (routing key)
        business_account_id: str - optional WABA id
        webhook_verify_token: str - token echoed during the subscription handshake
    Credentials:
        access_token: str - resolved from secrets (whatsapp_access_token)
    """

    routing_key_field = "phone_number_id"
    credential_secrets = {"access_token": "whatsapp_access_token"}

    @staticmethod
    def verify_handshake(mode: str, token: str, challenge: str, expected_token: str) -> str | None:
        """Return the challenge to echo when the subscription request is valid."""
        if mode == "subscribe" and expected_token and token == expected_token:
            return challenge
        return None

    @staticmethod
    def parse_webhook(payload: dict) -> list[ParsedWebhook]:
        """
        Parse a Cloud API notification.

        Each `entry[].changes[].value` carries its own `metadata.phone_number_id`;
        one ParsedWebhook is produced per value.
        """
        parsed: list[ParsedWebhook] = []
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                routing_key = (value.get("metadata") or {}).get("phone_number_id")
                item = ParsedWebhook(
                    channel_type="whatsapp",
                    routing_key=str(routing_key) if routing_key else None,
                )

                names = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts") or []
                }

                for message in value.get("messages") or []:
                    incoming = _parse_message(message, names)
                    if incoming is not None:
                        item.messages.append(incoming)

                for status in value.get("statuses") or []:
                    update = _parse_status(status)
                    if update is not None:
                        item.statuses.append(update)

                parsed.append(item)
        return parsed

    async def send(self, recipient: str, text: str) -> str | None:
        """Send a text message via the Graph API. Returns the wamid."""
        phone_number_id = self.config.get("phone_number_id", "")
        access_token = self.credentials.get("access_token", "")
        if not phone_number_id or not access_token:
            logger.warning("WhatsApp credentials missing; cannot send to %s", recipient)
            return None

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    f"{GRAPH_API_BASE}/{phone_number_id}/messages",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={
                        "messaging_product": "whatsapp",
                        "to": recipient,
                        "type": "text",
                        "text": {"body": text},
                    },
                    timeout=10.0,
                )
        except httpx.HTTPError as e:
            logger.error("WhatsApp send failed: %s", e)
            return None

        if not resp.is_success:
            logger.warning("WhatsApp API error: %s %s", resp.status_code, resp.text[:200])
            return None

        messages = resp.json().get("messages") or []
        message_id = messages[0].get("id") if messages else None
        logger.info("Sent WhatsApp message to %s (id=%s)", recipient, message_id)
        return message_id


def _parse_message(message: dict, names: dict) -> IncomingMessage | None:
    sender = message.get("from")
    if not sender:
        return None

    kind = message.get("type", "")
    if kind == "text":
        text = (message.get("text") or {}).get("body", "")
    elif kind == "button":
        text = (message.get("button") or {}).get("text", "")
    elif kind == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        text = reply.get("title", "")
    else:
        media = message.get(kind) or {}
        text = media.get("caption") or f"[{kind or 'unsupported'}]"

    return IncomingMessage(
        channel_type="whatsapp",
        sender=str(sender),
        text=text,
        provider_message_id=message.get("id") or None,
        sender_name=names.get(sender),
        timestamp=_from_unix(message.get("timestamp")),
        metadata={
            "whatsapp_message_id": message.get("id"),
            "from": sender,
            "type": kind,
        },
    )


def _parse_status(status: dict) -> DeliveryUpdate | None:
    message_id = status.get("id")
    raw = (status.get("status") or "").lower()
    if not message_id or raw not in _STATUS_MAP:
        return None
    errors = status.get("errors") or []
    error = None
    if errors:
        error = errors[0].get("title") or errors[0].get("message")
    return DeliveryUpdate(
        provider_message_id=message_id,
        status=_STATUS_MAP[raw],
        occurred_at=_from_unix(status.get("timestamp")),
        error=error,
    )


def _from_unix(value) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
