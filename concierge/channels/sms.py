"""
Twilio SMS Channel Adapter: webhook-based integration.

Setup:
1. Buy a number in the Twilio console
2. Point "A message comes in" to POST {public_base_url}/api/channels/sms/webhook
3. Status callbacks are requested per outbound message at /api/channels/sms/status
"""

from __future__ import annotations

import asyncio
import logging

from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse

from concierge.channels.base import ChannelAdapter, register_channel
from concierge.core.conversations import DeliveryStatus
from concierge.core.messages import DeliveryUpdate, IncomingMessage, ParsedWebhook

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "accepted": DeliveryStatus.QUEUED,
    "scheduled": DeliveryStatus.QUEUED,
    "queued": DeliveryStatus.QUEUED,
    "sending": DeliveryStatus.SENDING,
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
    "undelivered": DeliveryStatus.UNDELIVERED,
    "canceled": DeliveryStatus.FAILED,
}


@register_channel("sms")
class TwilioSMSAdapter(ChannelAdapter):
    """
    Twilio Programmable Messaging adapter.

    Config keys:
        phone_number: str - E.164 number the tenant receives SMS on (routing key)
        account_sid: str - Twilio account SID
        messaging_service_sid: str - optional messaging service
    Credentials:
        auth_token: str - resolved from secrets (twilio_auth_token)
    """

    routing_key_field = "phone_number"
    credential_secrets = {"auth_token": "twilio_auth_token"}

    @staticmethod
    def parse_webhook(payload: dict) -> list[ParsedWebhook]:
        """
        Parse a Twilio inbound-message form payload.

        The routing key is the destination number (`To`). A payload without `To`
        yields a ParsedWebhook with routing_key None.
        """
        to = (payload.get("To") or "").strip() or None
        parsed = ParsedWebhook(channel_type="sms", routing_key=to)

        sender = (payload.get("From") or "").strip()
        body = payload.get("Body")
        if not sender or body is None:
            return [parsed]

        metadata: dict = {
            "twilio_sid": payload.get("MessageSid"),
            "from": sender,
            "to": to,
        }
        num_media = _to_int(payload.get("NumMedia"))
        if num_media > 0:
            metadata["media"] = {
                "url": payload.get("MediaUrl0"),
                "content_type": payload.get("MediaContentType0"),
                "count": num_media,
            }

        parsed.messages.append(
            IncomingMessage(
                channel_type="sms",
                sender=sender,
                text=str(body),
                provider_message_id=payload.get("MessageSid") or None,
                metadata=metadata,
            )
        )
        return [parsed]

    @staticmethod
    def parse_status(payload: dict) -> DeliveryUpdate | None:
        """
        Parse a Twilio status callback.

        Returns None when the id is missing or the status is not an outbound
        delivery state (e.g. `received`).
        """
        sid = (payload.get("MessageSid") or "").strip()
        raw_status = (payload.get("MessageStatus") or "").strip().lower()
        if not sid or raw_status not in _STATUS_MAP:
            return None

        error = payload.get("ErrorMessage") or None
        if error is None and payload.get("ErrorCode"):
            error = f"Twilio error {payload['ErrorCode']}"

        return DeliveryUpdate(
            provider_message_id=sid,
            status=_STATUS_MAP[raw_status],
            error=error,
        )

    @staticmethod
    def empty_response() -> str:
        """TwiML document that acknowledges without replying."""
        return str(MessagingResponse())

    @staticmethod
    def validate_signature(auth_token: str, url: str, params: dict, signature: str) -> bool:
        if not auth_token or not signature:
            return False
        return RequestValidator(auth_token).validate(url, params, signature)

    async def send(self, recipient: str, text: str) -> str | None:
        """Send an SMS through the Twilio REST API. Returns the message SID."""
        account_sid = self.config.get("account_sid", "")
        auth_token = self.credentials.get("auth_token", "")
        if not account_sid or not auth_token:
            logger.warning("Twilio credentials missing; cannot send SMS to %s", recipient)
            return None

        kwargs: dict = {"to": recipient, "body": text}
        if self.config.get("messaging_service_sid"):
            kwargs["messaging_service_sid"] = self.config["messaging_service_sid"]
        else:
            kwargs["from_"] = self.config.get("phone_number")
        if self.config.get("status_callback"):
            kwargs["status_callback"] = self.config["status_callback"]

        client = Client(account_sid, auth_token)
        try:
            message = await asyncio.to_thread(client.messages.create, **kwargs)
        except TwilioException as e:
            logger.error("Twilio send failed: %s", e)
            return None

        logger.info("Sent SMS to %s (sid=%s)", recipient, message.sid)
        return message.sid


def _to_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
