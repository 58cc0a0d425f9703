from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from concierge.core.conversations import DeliveryStatus


@dataclass
class IncomingMessage:
    """Normalized inbound message (common format across all channels)."""

    channel_type: str
    sender: str
    text: str
    provider_message_id: str | None = None
    sender_name: str | None = None
    timestamp: datetime | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class DeliveryUpdate:
    provider_message_id: str
    status: DeliveryStatus
    occurred_at: datetime | None = None
    error: str | None = None


@dataclass
class ParsedWebhook:
    """Everything one provider payload carries for a single routing key."""

    channel_type: str
    routing_key: str | None
    messages: list[IncomingMessage] = field(default_factory=list)
    statuses: list[DeliveryUpdate] = field(default_factory=list)
