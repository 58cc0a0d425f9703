"""
Provider webhook entry points and tenant channel configuration.

Webhooks always acknowledge with 200 so providers do not retry-storm the
endpoint; failures are logged and rolled back instead of surfaced.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import TenantContext, current_tenant, require_area
from concierge.channels import CHANNEL_REGISTRY, get_adapter_class
from concierge.channels.sms import TwilioSMSAdapter
from concierge.channels.whatsapp import WhatsAppAdapter
from concierge.config import get_settings
from concierge.core.crud import (
    get_business,
    is_known_verify_token,
    list_channel_configs,
    resolve_channel_config,
    upsert_channel_config,
)
from concierge.core.errors import TierRequired, ValidationFailed
from concierge.core.inbound import InboundOutcome, apply_delivery_updates, route_webhook
from concierge.core.secrets import SECRET_CONFIG_KEYS, mask_config, resolve_secret
from concierge.core.tiers import TIER_LIMITS, TIER_ORDER, FeatureArea, channel_allowed
from concierge.db import get_db
from concierge.models import ChannelConfig

from .schemas import ChannelConfigRequest, ChannelConfigResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["channels"])


def _twiml_ack() -> Response:
    return Response(content=TwilioSMSAdapter.empty_response(), media_type="application/xml")


def _webhook_url(channel: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/api/channels/{channel}/webhook"


def enqueue_auto_replies(outcome: InboundOutcome) -> None:
    if not get_settings().auto_reply_enabled:
        return
    from concierge.workers.replies import send_auto_reply

    for stored in outcome.stored:
        try:
            send_auto_reply.delay(str(stored.conversation_id), str(stored.message_id))
        except Exception as e:
            logger.exception("Failed to enqueue auto-reply for message %s: %s", stored.message_id, e)


async def _twilio_signature_ok(db: AsyncSession, request: Request, form: dict) -> bool:
    """Check X-Twilio-Signature against the auth token of the tenant owning `To`."""
    if not get_settings().validate_twilio_signatures:
        return True
    config = await resolve_channel_config(db, "sms", (form.get("To") or "").strip())
    if config is None:
        # Unresolved keys are dropped by the router anyway.
        return True
    business = await get_business(db, config.business_id)
    auth_token = resolve_secret(business.slug, "twilio_auth_token") if business else None
    url = f"{get_settings().public_base_url.rstrip('/')}{request.url.path}"
    return TwilioSMSAdapter.validate_signature(
        auth_token or "", url, form, request.headers.get("X-Twilio-Signature", "")
    )


# --- SMS ---


@router.post("/sms/webhook")
async def sms_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> Response:
    try:
        form = dict(await request.form())
        if not await _twilio_signature_ok(db, request, form):
            logger.warning("Rejected SMS webhook with invalid Twilio signature for %s", form.get("To"))
            return _twiml_ack()

        outcome = await route_webhook(db, "sms", form)
        await db.commit()
        enqueue_auto_replies(outcome)
    except Exception as e:
        logger.exception("SMS webhook error: %s", e)
        await db.rollback()
    return _twiml_ack()


@router.post("/sms/status")
async def sms_status(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        form = dict(await request.form())
        update = TwilioSMSAdapter.parse_status(form)
        if update is None:
            logger.info(
                "SMS status callback ignored (sid=%s, status=%s)",
                form.get("MessageSid"),
                form.get("MessageStatus"),
            )
            return {"success": True}
        await apply_delivery_updates(db, [update])
        await db.commit()
    except Exception as e:
        logger.exception("SMS status callback error: %s", e)
        await db.rollback()
    return {"success": True}


# --- WhatsApp ---


@router.get("/whatsapp/webhook")
async def whatsapp_verify(
    mode: str = Query(default="", alias="hub.mode"),
    token: str = Query(default="", alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
    db: AsyncSession = Depends(get_db),
) -> Response:
    expected = get_settings().whatsapp_verify_token
    if token and token != expected and await is_known_verify_token(db, "whatsapp", token):
        expected = token

    echoed = WhatsAppAdapter.verify_handshake(mode, token, challenge, expected)
    if echoed is None:
        logger.warning("WhatsApp webhook verification failed (mode=%s)", mode)
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(echoed)


@router.post("/whatsapp/webhook")
async def whatsapp_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            logger.warning("WhatsApp webhook with non-object body ignored")
            return {"success": True}
        outcome = await route_webhook(db, "whatsapp", payload)
        await db.commit()
        enqueue_auto_replies(outcome)
    except Exception as e:
        logger.exception("WhatsApp webhook error: %s", e)
        await db.rollback()
    return {"success": True}


# --- Configuration ---


def _config_response(config: ChannelConfig) -> ChannelConfigResponse:
    return ChannelConfigResponse(
        id=config.id,
        channel=config.channel,
        routing_key=config.routing_key,
        is_active=config.is_active,
        config=mask_config(config.config),
        webhook_url=_webhook_url(config.channel),
        updated_at=config.updated_at,
    )


@router.get("/config", response_model=list[ChannelConfigResponse])
async def get_channel_configs(
    tenant: TenantContext = Depends(current_tenant),
    db: AsyncSession = Depends(get_db),
) -> list[ChannelConfigResponse]:
    configs = await list_channel_configs(db, tenant.business.id)
    return [_config_response(c) for c in configs]


@router.put("/config/{channel}", response_model=ChannelConfigResponse)
async def put_channel_config(
    channel: str,
    payload: ChannelConfigRequest,
    tenant: TenantContext = Depends(require_area(FeatureArea.MULTI_CHANNEL)),
    db: AsyncSession = Depends(get_db),
) -> ChannelConfigResponse:
    if channel not in CHANNEL_REGISTRY:
        raise ValidationFailed(f"Unsupported channel: {channel}", field="channel")
    if not channel_allowed(tenant.tier, channel):
        needed = next(t for t in TIER_ORDER if channel in TIER_LIMITS[t].channels)
        raise TierRequired(
            f"The {channel} channel requires the {needed.value} plan",
            area=FeatureArea.MULTI_CHANNEL.value,
            required_tier=needed.value,
            current_tier=tenant.tier.value,
        )

    secret_keys = sorted(SECRET_CONFIG_KEYS.intersection(payload.config))
    if secret_keys:
        raise ValidationFailed(
            "Provider credentials must be configured as secrets, not in the channel config",
            fields=secret_keys,
        )

    routing_key = get_adapter_class(channel).routing_key_from_config(payload.config)
    if not routing_key:
        field = get_adapter_class(channel).routing_key_field
        raise ValidationFailed(f"config.{field} is required", field=field)

    config = await upsert_channel_config(
        db,
        business_id=tenant.business.id,
        channel=channel,
        routing_key=routing_key,
        config=payload.config,
        is_active=payload.is_active,
    )
    logger.info("Business %s saved %s config (routing key %s)", tenant.business.id, channel, routing_key)
    return _config_response(config)
