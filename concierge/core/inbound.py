"""
Inbound channel router.

Takes a raw provider payload, resolves the owning tenant by routing key, stores
user messages into that tenant's conversations and applies delivery-status
updates. Nothing here decides the HTTP acknowledgement: provider webhooks are
always acknowledged with success by the API layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.channels import get_adapter_class
from concierge.core.conversations import (
    MessageRole,
    append_message,
    apply_delivery_status,
    find_message_by_provider_id,
    get_or_create_channel_conversation,
)
from concierge.core.crud import get_or_create_guest_profile, resolve_channel_config
from concierge.core.messages import DeliveryUpdate, IncomingMessage, ParsedWebhook

logger = logging.getLogger(__name__)


@dataclass
class StoredMessage:
    business_id: UUID
    conversation_id: UUID
    message_id: UUID


@dataclass
class InboundOutcome:
    stored: list[StoredMessage] = field(default_factory=list)
    duplicates: int = 0
    unresolved_keys: list[str] = field(default_factory=list)
    statuses_applied: int = 0
    statuses_unmatched: int = 0

    @property
    def routed(self) -> bool:
        return not self.unresolved_keys


async def route_webhook(db: AsyncSession, channel_type: str, payload: dict) -> InboundOutcome:
    """Route every part of `payload` received on the `channel_type` endpoint."""
    adapter_cls = get_adapter_class(channel_type)
    outcome = InboundOutcome()

    for parsed in adapter_cls.parse_webhook(payload):
        await _route_parsed(db, parsed, outcome)

    return outcome


async def _route_parsed(db: AsyncSession, parsed: ParsedWebhook, outcome: InboundOutcome) -> None:
    if not parsed.routing_key:
        logger.warning("%s webhook without routing key; ignored", parsed.channel_type)
        outcome.unresolved_keys.append("")
        return

    config = await resolve_channel_config(db, parsed.channel_type, parsed.routing_key)
    if config is None:
        logger.warning(
            "Received %s webhook for unconfigured routing key %s",
            parsed.channel_type,
            parsed.routing_key,
        )
        outcome.unresolved_keys.append(parsed.routing_key)
        return

    for incoming in parsed.messages:
        stored = await store_incoming(db, config.business_id, incoming)
        if stored is None:
            outcome.duplicates += 1
        else:
            outcome.stored.append(stored)

    if parsed.statuses:
        applied, unmatched = await apply_delivery_updates(db, parsed.statuses)
        outcome.statuses_applied += applied
        outcome.statuses_unmatched += unmatched


async def store_incoming(db: AsyncSession, business_id: UUID, incoming: IncomingMessage) -> StoredMessage | None:
    """
    Append an inbound message to the contact's conversation.

    Returns None when a message with the same provider id is already stored.
    """
    provider_id = incoming.provider_message_id
    if provider_id and await find_message_by_provider_id(db, provider_id) is not None:
        logger.info("Duplicate %s message %s ignored", incoming.channel_type, provider_id)
        return None

    metadata = dict(incoming.metadata)
    if provider_id:
        metadata["provider_message_id"] = provider_id

    try:
        # Savepoint: a concurrent delivery of the same message loses on the unique index,
        # and the guest profile and conversation it created are rolled back with it.
        async with db.begin_nested():
            guest = await get_or_create_guest_profile(db, business_id, incoming.sender)
            if incoming.sender_name and not guest.name:
                guest.name = incoming.sender_name

            conv, is_new = await get_or_create_channel_conversation(
                db,
                business_id=business_id,
                channel=incoming.channel_type,
                contact=incoming.sender,
                guest_profile_id=guest.id,
            )
            msg = await append_message(
                db,
                conv,
                MessageRole.USER,
                incoming.text,
                metadata=metadata,
                provider_message_id=provider_id,
            )
    except IntegrityError:
        logger.info("Duplicate %s message %s ignored (concurrent delivery)", incoming.channel_type, provider_id)
        return None

    if is_new:
        logger.info("Started %s conversation %s for business %s", incoming.channel_type, conv.id, business_id)
    return StoredMessage(business_id=business_id, conversation_id=conv.id, message_id=msg.id)


async def apply_delivery_updates(db: AsyncSession, updates: list[DeliveryUpdate]) -> tuple[int, int]:
    """Apply status updates by provider correlation id. Returns (applied, unmatched)."""
    applied = unmatched = 0
    for update in updates:
        count = await apply_delivery_status(
            db,
            update.provider_message_id,
            update.status,
            occurred_at=update.occurred_at,
            error=update.error,
        )
        if count:
            applied += count
            logger.info("Delivery status %s -> %s", update.provider_message_id, update.status.value)
        else:
            unmatched += 1
            logger.info(
                "Delivery status %s for %s ignored (unknown message or already further along)",
                update.status.value,
                update.provider_message_id,
            )
    return applied, unmatched
