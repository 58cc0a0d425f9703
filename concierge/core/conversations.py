"""
Conversation/message store.

Writes that append to a conversation take a row lock on it first so concurrent
webhook deliveries for the same conversation are serialized and message
timestamps stay strictly increasing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from concierge.core.errors import NotFoundError, TierLimitReached, ValidationFailed
from concierge.models import Conversation, Message

logger = logging.getLogger(__name__)

RATING_MIN = 1
RATING_MAX = 5


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class DeliveryStatus(str, Enum):
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    UNDELIVERED = "undelivered"


# Progress order. An update never overwrites a status that ranks higher.
DELIVERY_RANK: dict[DeliveryStatus, int] = {
    DeliveryStatus.QUEUED: 0,
    DeliveryStatus.SENDING: 1,
    DeliveryStatus.SENT: 2,
    DeliveryStatus.DELIVERED: 3,
    DeliveryStatus.UNDELIVERED: 3,
    DeliveryStatus.FAILED: 3,
    DeliveryStatus.READ: 4,
}


@dataclass
class ConversationSummary:
    conversation: Conversation
    last_message: Message | None
    message_count: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_rating(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not RATING_MIN <= value <= RATING_MAX:
        raise ValidationFailed(
            f"{field} must be an integer between {RATING_MIN} and {RATING_MAX}",
            field=field,
        )
    return value


# --- Reads ---


async def get_conversation(db: AsyncSession, conversation_id: UUID) -> Conversation | None:
    result = await db.execute(select(Conversation).where(Conversation.id == conversation_id))
    return result.scalar_one_or_none()


async def list_messages(db: AsyncSession, conversation_id: UUID) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    return list(result.scalars().all())


async def get_conversation_detail(db: AsyncSession, conversation_id: UUID) -> tuple[Conversation, list[Message]]:
    conv = await get_conversation(db, conversation_id)
    if conv is None:
        raise NotFoundError("Conversation not found")
    return conv, await list_messages(db, conversation_id)


async def get_conversation_by_session(
    db: AsyncSession,
    session_id: str,
) -> tuple[Conversation, list[Message]] | None:
    """Most recently created conversation for an anonymous widget session, or None."""
    result = await db.execute(
        select(Conversation)
        .where(Conversation.session_id == session_id)
        .order_by(Conversation.created_at.desc())
        .limit(1)
    )
    conv = result.scalar_one_or_none()
    if conv is None:
        return None
    return conv, await list_messages(db, conv.id)


async def list_business_conversations(
    db: AsyncSession,
    business_id: UUID,
    limit: int = 50,
) -> list[ConversationSummary]:
    """Inbox view: latest-updated conversations with their last message and message count."""
    counts_sq = (
        select(Message.conversation_id, func.count(Message.id).label("message_count"))
        .group_by(Message.conversation_id)
        .subquery()
    )
    result = await db.execute(
        select(Conversation, func.coalesce(counts_sq.c.message_count, 0))
        .outerjoin(counts_sq, counts_sq.c.conversation_id == Conversation.id)
        .where(Conversation.business_id == business_id)
        .order_by(Conversation.updated_at.desc())
        .limit(limit)
    )
    rows = result.all()
    if not rows:
        return []

    conv_ids = [conv.id for conv, _ in rows]
    ranked = (
        select(
            Message,
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rn"),
        )
        .where(Message.conversation_id.in_(conv_ids))
        .subquery()
    )
    latest_alias = aliased(Message, ranked)
    latest_result = await db.execute(select(latest_alias).where(ranked.c.rn == 1))
    latest = {m.conversation_id: m for m in latest_result.scalars().all()}

    return [
        ConversationSummary(conversation=conv, last_message=latest.get(conv.id), message_count=int(count or 0))
        for conv, count in rows
    ]


async def get_history(db: AsyncSession, conversation_id: UUID, limit: int = 20) -> list[dict]:
    """Return recent history in the format: [{"role": "...", "content": "..."}, ...]."""
    result = await db.execute(
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.role.in_([MessageRole.USER.value, MessageRole.ASSISTANT.value]),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    messages = list(result.scalars().all())
    messages.reverse()
    return [{"role": m.role, "content": m.content} for m in messages]


async def find_message_by_provider_id(db: AsyncSession, provider_message_id: str) -> Message | None:
    result = await db.execute(select(Message).where(Message.provider_message_id == provider_message_id))
    return result.scalar_one_or_none()


# --- Writes ---


async def lock_conversation(db: AsyncSession, conversation_id: UUID) -> Conversation:
    result = await db.execute(
        select(Conversation).where(Conversation.id == conversation_id).with_for_update()
    )
    conv = result.scalar_one_or_none()
    if conv is None:
        raise NotFoundError("Conversation not found")
    return conv


async def _next_timestamp(db: AsyncSession, conversation_id: UUID) -> datetime:
    result = await db.execute(
        select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
    )
    last = result.scalar_one_or_none()
    now = _utcnow()
    if isinstance(last, datetime) and last >= now:
        return last + timedelta(microseconds=1)
    return now


async def append_message(
    db: AsyncSession,
    conversation: Conversation,
    role: MessageRole,
    content: str,
    metadata: dict | None = None,
    provider_message_id: str | None = None,
    delivery_status: DeliveryStatus | None = None,
) -> Message:
    """Append a message. The caller must hold the lock from `lock_conversation`."""
    created_at = await _next_timestamp(db, conversation.id)
    msg = Message(
        conversation_id=conversation.id,
        role=role.value,
        content=content,
        metadata_=metadata or {},
        provider_message_id=provider_message_id,
        delivery_status=delivery_status.value if delivery_status else None,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(msg)
    conversation.updated_at = created_at
    await db.flush()
    return msg


async def create_conversation(
    db: AsyncSession,
    business_id: UUID,
    channel: str = "web",
    session_id: str | None = None,
    external_contact: str | None = None,
    guest_profile_id: UUID | None = None,
) -> Conversation:
    conv = Conversation(
        business_id=business_id,
        channel=channel,
        session_id=session_id,
        external_contact=external_contact,
        guest_profile_id=guest_profile_id,
    )
    db.add(conv)
    await db.flush()
    return conv


async def get_or_create_channel_conversation(
    db: AsyncSession,
    business_id: UUID,
    channel: str,
    contact: str,
    guest_profile_id: UUID | None = None,
) -> tuple[Conversation, bool]:
    """Latest conversation with this contact on this channel, locked. Returns (conversation, is_new)."""
    result = await db.execute(
        select(Conversation)
        .where(
            Conversation.business_id == business_id,
            Conversation.channel == channel,
            Conversation.external_contact == contact,
        )
        .order_by(Conversation.updated_at.desc())
        .limit(1)
        .with_for_update()
    )
    conv = result.scalar_one_or_none()
    if conv is not None:
        return conv, False

    session_id = f"{channel}_{contact}_{int(_utcnow().timestamp() * 1000)}"
    conv = await create_conversation(
        db,
        business_id=business_id,
        channel=channel,
        session_id=session_id,
        external_contact=contact,
        guest_profile_id=guest_profile_id,
    )
    return conv, True


async def count_conversations_since(db: AsyncSession, business_id: UUID, since: datetime) -> int:
    result = await db.execute(
        select(func.count(Conversation.id)).where(
            Conversation.business_id == business_id, Conversation.created_at >= since
        )
    )
    return int(result.scalar_one() or 0)


async def get_or_create_session_conversation(
    db: AsyncSession,
    business_id: UUID,
    session_id: str,
    daily_limit: int | None = None,
) -> Conversation:
    """
    Locked conversation for a widget session, created on the session's first message.

    With `daily_limit`, a new conversation is refused once the business has
    started that many since midnight UTC. Resuming a session is never refused.
    """
    result = await db.execute(
        select(Conversation)
        .where(Conversation.business_id == business_id, Conversation.session_id == session_id)
        .order_by(Conversation.created_at.desc())
        .limit(1)
        .with_for_update()
    )
    conv = result.scalar_one_or_none()
    if conv is None:
        if daily_limit is not None:
            midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
            if await count_conversations_since(db, business_id, midnight) >= daily_limit:
                raise TierLimitReached(
                    f"Daily limit reached ({daily_limit}/day). Resets at midnight.", limit=daily_limit
                )
        conv = await create_conversation(db, business_id=business_id, channel="web", session_id=session_id)
    return conv


async def rate_conversation(
    db: AsyncSession,
    conversation_id: UUID,
    rating: int,
    feedback: str | None = None,
) -> Conversation:
    """
    Set the satisfaction score and mark the conversation resolved.

    Non-empty feedback is kept as a system message in the same transaction.
    """
    _check_rating(rating, "rating")
    conv = await lock_conversation(db, conversation_id)
    conv.satisfaction = rating
    conv.resolved = True

    if feedback and feedback.strip():
        await append_message(
            db,
            conv,
            MessageRole.SYSTEM,
            f"Customer feedback ({rating}/5 stars): {feedback.strip()}",
            metadata={"kind": "feedback", "rating": rating},
        )
    else:
        conv.updated_at = _utcnow()
    await db.flush()
    return conv


async def patch_conversation(db: AsyncSession, conversation_id: UUID, **changes) -> Conversation:
    """Partial update. Only `satisfaction` and `resolved` are accepted; absent keys are untouched."""
    unknown = set(changes) - {"satisfaction", "resolved"}
    if unknown:
        raise ValidationFailed(f"Unsupported fields: {', '.join(sorted(unknown))}")

    conv = await lock_conversation(db, conversation_id)
    if "satisfaction" in changes:
        value = changes["satisfaction"]
        conv.satisfaction = None if value is None else _check_rating(value, "satisfaction")
    if "resolved" in changes:
        if not isinstance(changes["resolved"], bool):
            raise ValidationFailed("resolved must be a boolean", field="resolved")
        conv.resolved = changes["resolved"]
    conv.updated_at = _utcnow()
    await db.flush()
    return conv


async def apply_delivery_status(
    db: AsyncSession,
    provider_message_id: str,
    status: DeliveryStatus,
    occurred_at: datetime | None = None,
    error: str | None = None,
) -> int:
    """
    Update every message correlated with `provider_message_id`. Returns the number updated.

    Messages already at a later status (per DELIVERY_RANK) are left untouched, so a
    late `sent` callback cannot undo `delivered`.
    """
    values: dict = {"delivery_status": status.value}
    if status is DeliveryStatus.DELIVERED:
        values["delivered_at"] = occurred_at or _utcnow()
    if error:
        values["delivery_error"] = error

    later = [s.value for s, rank in DELIVERY_RANK.items() if rank > DELIVERY_RANK[status]]
    stmt = update(Message).where(Message.provider_message_id == provider_message_id)
    if later:
        stmt = stmt.where(or_(Message.delivery_status.is_(None), Message.delivery_status.not_in(later)))

    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    return int(result.rowcount or 0)
