"""
Conversation reads for the dashboard and the widget.

`businessId` and `conversationId` lookups are scoped to the authenticated owner
(or an administrator). `sessionId` lookups stay open: the widget holds nothing
but its session id.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import optional_principal
from concierge.config import get_settings
from concierge.core.auth import Principal
from concierge.core.conversations import (
    get_conversation,
    get_conversation_by_session,
    get_conversation_detail,
    list_business_conversations,
    patch_conversation,
)
from concierge.core.crud import get_business
from concierge.core.errors import AccessDenied, AuthenticationFailed, NotFoundError, ValidationFailed
from concierge.db import get_db
from concierge.models import Business, Conversation, Message

from .schemas import (
    BusinessSummary,
    ConversationDetailResponse,
    ConversationPatchRequest,
    ConversationResponse,
    ConversationSummaryResponse,
    MessageResponse,
)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def ensure_owner(principal: Principal | None, business_id: UUID) -> None:
    if principal is None:
        raise AuthenticationFailed()
    if principal.is_admin:
        return
    if principal.business_id != business_id:
        raise AccessDenied("You do not have access to this business")


def _detail(conv: Conversation, messages: list[Message], business: Business | None) -> ConversationDetailResponse:
    return ConversationDetailResponse(
        **ConversationResponse.model_validate(conv).model_dump(),
        messages=[MessageResponse.model_validate(m) for m in messages],
        business=BusinessSummary.model_validate(business) if business is not None else None,
    )


@router.get("")
async def get_conversations(
    business_id: UUID | None = Query(default=None, alias="businessId"),
    session_id: str | None = Query(default=None, alias="sessionId"),
    conversation_id: UUID | None = Query(default=None, alias="conversationId"),
    principal: Principal | None = Depends(optional_principal),
    db: AsyncSession = Depends(get_db),
):
    if conversation_id is not None:
        conv, messages = await get_conversation_detail(db, conversation_id)
        ensure_owner(principal, conv.business_id)
        business = await get_business(db, conv.business_id)
        return {"conversation": _detail(conv, messages, business).model_dump(by_alias=True, mode="json")}

    if session_id is not None:
        found = await get_conversation_by_session(db, session_id)
        if found is None:
            return {"conversation": None}
        conv, messages = found
        business = await get_business(db, conv.business_id)
        return {"conversation": _detail(conv, messages, business).model_dump(by_alias=True, mode="json")}

    if business_id is not None:
        ensure_owner(principal, business_id)
        summaries = await list_business_conversations(db, business_id, limit=get_settings().conversation_page_size)
        items = [
            ConversationSummaryResponse(
                **ConversationResponse.model_validate(s.conversation).model_dump(),
                last_message=MessageResponse.model_validate(s.last_message) if s.last_message else None,
                message_count=s.message_count,
            ).model_dump(by_alias=True, mode="json")
            for s in summaries
        ]
        return {"conversations": items}

    raise ValidationFailed("One of businessId, sessionId or conversationId is required")


@router.patch("", response_model=ConversationResponse)
async def update_conversation(
    payload: ConversationPatchRequest,
    principal: Principal | None = Depends(optional_principal),
    db: AsyncSession = Depends(get_db),
) -> ConversationResponse:
    conv = await get_conversation(db, payload.conversation_id)
    if conv is None:
        raise NotFoundError("Conversation not found")
    ensure_owner(principal, conv.business_id)

    changes = payload.model_dump(include=payload.model_fields_set - {"conversation_id"})
    conv = await patch_conversation(db, conv.id, **changes)
    return ConversationResponse.model_validate(conv)
