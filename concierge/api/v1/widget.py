from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.conversations import (
    MessageRole,
    append_message,
    get_history,
    get_or_create_session_conversation,
    lock_conversation,
    rate_conversation,
)
from concierge.core.crud import get_business, get_subscription, list_knowledge_entries
from concierge.core.errors import NotFoundError
from concierge.core.replies import generate_reply
from concierge.core.subscription import effective_tier
from concierge.core.tiers import TIER_LIMITS
from concierge.db import get_db

from .schemas import RatingRequest, RatingResponse, WidgetChatRequest, WidgetChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/widget", tags=["widget"])


@router.post("/rate", response_model=RatingResponse)
async def rate(payload: RatingRequest, db: AsyncSession = Depends(get_db)) -> RatingResponse:
    await rate_conversation(db, payload.conversation_id, payload.rating, payload.feedback)
    logger.info("Conversation %s rated %d/5", payload.conversation_id, payload.rating)
    return RatingResponse()


@router.post("/chat", response_model=WidgetChatResponse)
async def chat(payload: WidgetChatRequest, db: AsyncSession = Depends(get_db)) -> WidgetChatResponse:
    business = await get_business(db, payload.business_id)
    if business is None or not business.is_active:
        raise NotFoundError("Business not found")

    tier = effective_tier(business, await get_subscription(db, business.id))
    conv = await get_or_create_session_conversation(
        db, business.id, payload.session_id, daily_limit=TIER_LIMITS[tier].conversations_per_day
    )
    await append_message(db, conv, MessageRole.USER, payload.message)

    knowledge = await list_knowledge_entries(db, business.id, is_active=True)
    history = await get_history(db, conv.id)
    # The session row lock must not be held across the LLM call.
    await db.commit()

    text, metadata = await generate_reply(business, tier, knowledge, history, channel="web")
    conv = await lock_conversation(db, conv.id)
    await append_message(db, conv, MessageRole.ASSISTANT, text, metadata=metadata)

    return WidgetChatResponse(conversation_id=conv.id, reply=text)
