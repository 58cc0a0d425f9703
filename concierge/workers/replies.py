"""
Auto-reply worker.

Runs after an inbound channel message is committed:
1. Load the message, its conversation and the owning business
2. Ask the Brain for a reply (business info + active knowledge base)
3. Send it through the tenant's channel adapter
4. Store the assistant message with the provider id so status callbacks correlate
"""

from __future__ import annotations

import logging
from uuid import UUID

from concierge.workers.celery_app import celery_app
from concierge.workers.loop import run

logger = logging.getLogger(__name__)


@celery_app.task(name="concierge.send_auto_reply")
def send_auto_reply(conversation_id: str, message_id: str) -> str | None:
    return run(_send_auto_reply(UUID(conversation_id), UUID(message_id)))


async def _send_auto_reply(conversation_id: UUID, message_id: UUID) -> str | None:
    from concierge.channels import build_tenant_adapter
    from concierge.config import get_settings
    from concierge.core.conversations import (
        DeliveryStatus,
        MessageRole,
        append_message,
        get_conversation,
        get_history,
        lock_conversation,
    )
    from concierge.core.crud import get_business, get_subscription, list_channel_configs, list_knowledge_entries
    from concierge.core.replies import generate_reply
    from concierge.core.subscription import effective_tier
    from concierge.db import session_scope

    settings = get_settings()

    async with session_scope() as db:
        conv = await get_conversation(db, conversation_id)
        if conv is None or not conv.external_contact:
            logger.warning("Auto-reply skipped: conversation %s not found or has no contact", conversation_id)
            return None

        business = await get_business(db, conv.business_id)
        if business is None or not business.is_active:
            logger.warning("Auto-reply skipped: business %s inactive", conv.business_id)
            return None

        config = next(
            (c for c in await list_channel_configs(db, business.id) if c.channel == conv.channel and c.is_active),
            None,
        )
        if config is None:
            logger.warning("Auto-reply skipped: no active %s config for business %s", conv.channel, business.id)
            return None

        tier = effective_tier(business, await get_subscription(db, business.id))
        knowledge = await list_knowledge_entries(db, business.id, is_active=True)
        history = await get_history(db, conv.id)
        text, metadata = await generate_reply(business, tier, knowledge, history, channel=conv.channel)

        adapter_config = dict(config.config or {})
        if conv.channel == "sms":
            adapter_config["status_callback"] = f"{settings.public_base_url.rstrip('/')}/api/channels/sms/status"
        adapter = build_tenant_adapter(conv.channel, business.slug, adapter_config)
        provider_id = await adapter.send(conv.external_contact, text)

        metadata = {**metadata, "in_reply_to": str(message_id)}
        conv = await lock_conversation(db, conv.id)
        await append_message(
            db,
            conv,
            MessageRole.ASSISTANT,
            text,
            metadata=metadata,
            provider_message_id=provider_id,
            delivery_status=DeliveryStatus.SENT if provider_id else DeliveryStatus.FAILED,
        )
        logger.info("Auto-reply sent on %s for conversation %s (provider id %s)", conv.channel, conv.id, provider_id)
        return provider_id
