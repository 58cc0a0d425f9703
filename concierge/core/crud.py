from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.errors import NotFoundError, RoutingKeyConflict
from concierge.core.subscription import SubscriptionStatus
from concierge.core.tiers import Tier, normalize_tier
from concierge.models import (
    AdminUser,
    Business,
    ChannelConfig,
    Conversation,
    GuestProfile,
    KnowledgeBaseEntry,
    Message,
    Subscription,
)

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "business"


# --- Businesses ---


async def get_business(db: AsyncSession, business_id: UUID) -> Business | None:
    result = await db.execute(select(Business).where(Business.id == business_id))
    return result.scalar_one_or_none()


async def get_business_by_email(db: AsyncSession, email: str) -> Business | None:
    result = await db.execute(select(Business).where(Business.email == email.lower()))
    return result.scalar_one_or_none()


async def get_subscription(db: AsyncSession, business_id: UUID) -> Subscription | None:
    result = await db.execute(select(Subscription).where(Subscription.business_id == business_id))
    return result.scalar_one_or_none()


async def _unique_slug(db: AsyncSession, name: str) -> str:
    base = slugify(name)
    result = await db.execute(select(Business.id).where(Business.slug == base))
    if result.scalar_one_or_none() is None:
        return base
    return f"{base}-{uuid4().hex[:6]}"


async def create_business(
    db: AsyncSession,
    email: str,
    password_hash: str,
    name: str,
    business_type: str,
    tier: Tier,
    now: datetime | None = None,
) -> Business:
    """Create a tenant together with its trial subscription."""
    now = now or datetime.now(timezone.utc)
    business = Business(
        email=email.lower(),
        password_hash=password_hash,
        slug=await _unique_slug(db, name),
        name=name,
        business_type=business_type,
        tier=tier.value,
        welcome_message=f"Aloha! Welcome to {name}. How can I help you today?",
        business_info={},
    )
    db.add(business)
    await db.flush()

    db.add(
        Subscription(
            business_id=business.id,
            tier=tier.value,
            status=SubscriptionStatus.TRIAL.value,
            billing_cycle="monthly",
            start_date=now,
            end_date=now + timedelta(days=30),
        )
    )
    await db.flush()
    return business


async def list_businesses(db: AsyncSession, limit: int = 50, offset: int = 0) -> list[Business]:
    result = await db.execute(
        select(Business).order_by(Business.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def set_business_tier(db: AsyncSession, business_id: UUID, tier: Tier) -> Business:
    business = await get_business(db, business_id)
    if business is None:
        raise NotFoundError("Business not found")
    business.tier = tier.value
    subscription = await get_subscription(db, business_id)
    if subscription is not None:
        subscription.tier = tier.value
    await db.flush()
    return business


async def purge_business(db: AsyncSession, business_id: UUID) -> dict[str, int]:
    """Delete a tenant and everything it owns. Runs inside the caller's transaction."""
    business = await get_business(db, business_id)
    if business is None:
        raise NotFoundError("Business not found")

    conv_ids = select(Conversation.id).where(Conversation.business_id == business_id)
    counts: dict[str, int] = {}
    counts["messages"] = (
        await db.execute(delete(Message).where(Message.conversation_id.in_(conv_ids)))
    ).rowcount
    counts["conversations"] = (
        await db.execute(delete(Conversation).where(Conversation.business_id == business_id))
    ).rowcount
    counts["knowledge_base"] = (
        await db.execute(delete(KnowledgeBaseEntry).where(KnowledgeBaseEntry.business_id == business_id))
    ).rowcount
    counts["guest_profiles"] = (
        await db.execute(delete(GuestProfile).where(GuestProfile.business_id == business_id))
    ).rowcount
    counts["channel_configs"] = (
        await db.execute(delete(ChannelConfig).where(ChannelConfig.business_id == business_id))
    ).rowcount
    counts["subscriptions"] = (
        await db.execute(delete(Subscription).where(Subscription.business_id == business_id))
    ).rowcount
    await db.execute(delete(Business).where(Business.id == business_id))

    logger.warning("Purged business %s (%s): %s", business_id, business.email, counts)
    return counts


async def normalize_stored_tiers(db: AsyncSession) -> list[tuple[UUID, str]]:
    """Rewrite stored tiers outside the enumeration to starter. Returns (id, old value) pairs."""
    valid = [t.value for t in Tier]
    result = await db.execute(select(Business).where(Business.tier.not_in(valid)))
    fixed: list[tuple[UUID, str]] = []
    for business in result.scalars().all():
        fixed.append((business.id, business.tier))
        business.tier = normalize_tier(business.tier).value
    await db.flush()
    return fixed


# --- Admins ---


async def get_admin_by_email(db: AsyncSession, email: str) -> AdminUser | None:
    result = await db.execute(select(AdminUser).where(AdminUser.email == email.lower()))
    return result.scalar_one_or_none()


async def create_admin(
    db: AsyncSession,
    email: str,
    password_hash: str,
    name: str | None = None,
    role: str = "admin",
) -> AdminUser:
    admin = AdminUser(email=email.lower(), password_hash=password_hash, name=name, role=role)
    db.add(admin)
    await db.flush()
    return admin


# --- Channel configuration ---


async def list_channel_configs(db: AsyncSession, business_id: UUID) -> list[ChannelConfig]:
    result = await db.execute(
        select(ChannelConfig)
        .where(ChannelConfig.business_id == business_id)
        .order_by(ChannelConfig.channel)
    )
    return list(result.scalars().all())


async def resolve_channel_config(db: AsyncSession, channel: str, routing_key: str) -> ChannelConfig | None:
    """
    Find the active configuration for (channel, routing_key) in a single read.

    A unique index prevents duplicates; if one slips through anyway the oldest
    configuration wins and the ambiguity is logged.
    """
    result = await db.execute(
        select(ChannelConfig)
        .where(
            ChannelConfig.channel == channel,
            ChannelConfig.routing_key == routing_key,
            ChannelConfig.is_active == True,  # noqa: E712
        )
        .order_by(ChannelConfig.created_at.asc(), ChannelConfig.id.asc())
        .limit(2)
    )
    rows = list(result.scalars().all())
    if not rows:
        return None
    if len(rows) > 1:
        logger.warning(
            "Ambiguous %s routing key %s matches %d active configs; using %s",
            channel,
            routing_key,
            len(rows),
            rows[0].id,
        )
    return rows[0]


async def upsert_channel_config(
    db: AsyncSession,
    business_id: UUID,
    channel: str,
    routing_key: str,
    config: dict,
    is_active: bool,
) -> ChannelConfig:
    if is_active:
        clash = await resolve_channel_config(db, channel, routing_key)
        if clash is not None and clash.business_id != business_id:
            raise RoutingKeyConflict(
                "Routing key is already in use",
                channel=channel,
                routing_key=routing_key,
            )

    result = await db.execute(
        select(ChannelConfig).where(
            ChannelConfig.business_id == business_id,
            ChannelConfig.channel == channel,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is None:
        existing = ChannelConfig(
            business_id=business_id,
            channel=channel,
            routing_key=routing_key,
            config=config,
            is_active=is_active,
        )
        db.add(existing)
    else:
        existing.routing_key = routing_key
        existing.config = config
        existing.is_active = is_active
    await db.flush()
    return existing


# --- Guests ---


async def get_or_create_guest_profile(db: AsyncSession, business_id: UUID, phone: str) -> GuestProfile:
    result = await db.execute(
        select(GuestProfile).where(GuestProfile.business_id == business_id, GuestProfile.phone == phone)
    )
    guest = result.scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if guest is None:
        guest = GuestProfile(business_id=business_id, phone=phone, last_visit=now, metadata_={})
        db.add(guest)
    else:
        guest.last_visit = now
    await db.flush()
    return guest


async def list_guest_profiles(db: AsyncSession, business_id: UUID, limit: int = 50) -> list[GuestProfile]:
    result = await db.execute(
        select(GuestProfile)
        .where(GuestProfile.business_id == business_id)
        .order_by(GuestProfile.last_visit.desc().nulls_last())
        .limit(limit)
    )
    return list(result.scalars().all())


# --- Knowledge base ---


async def list_knowledge_entries(
    db: AsyncSession,
    business_id: UUID,
    category: str | None = None,
    language: str | None = None,
    is_active: bool | None = None,
) -> list[KnowledgeBaseEntry]:
    query = select(KnowledgeBaseEntry).where(KnowledgeBaseEntry.business_id == business_id)
    if category:
        query = query.where(KnowledgeBaseEntry.category == category)
    if language:
        query = query.where(KnowledgeBaseEntry.language == language)
    if is_active is not None:
        query = query.where(KnowledgeBaseEntry.is_active == is_active)
    result = await db.execute(
        query.order_by(
            KnowledgeBaseEntry.priority.desc(),
            KnowledgeBaseEntry.category.asc(),
            KnowledgeBaseEntry.created_at.desc(),
        )
    )
    return list(result.scalars().all())


async def count_knowledge_entries(db: AsyncSession, business_id: UUID) -> int:
    result = await db.execute(
        select(func.count(KnowledgeBaseEntry.id)).where(KnowledgeBaseEntry.business_id == business_id)
    )
    return int(result.scalar_one() or 0)


async def get_knowledge_entry(db: AsyncSession, business_id: UUID, entry_id: UUID) -> KnowledgeBaseEntry:
    result = await db.execute(
        select(KnowledgeBaseEntry).where(
            KnowledgeBaseEntry.id == entry_id,
            KnowledgeBaseEntry.business_id == business_id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError("Knowledge base entry not found")
    return entry


async def create_knowledge_entry(db: AsyncSession, business_id: UUID, **fields) -> KnowledgeBaseEntry:
    entry = KnowledgeBaseEntry(business_id=business_id, **fields)
    db.add(entry)
    await db.flush()
    return entry


async def is_known_verify_token(db: AsyncSession, channel: str, token: str) -> bool:
    """True if an active configuration of `channel` carries this webhook verify token."""
    if not token:
        return False
    result = await db.execute(
        select(ChannelConfig.id)
        .where(
            ChannelConfig.channel == channel,
            ChannelConfig.is_active == True,  # noqa: E712
            ChannelConfig.config["webhook_verify_token"].astext == token,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def update_knowledge_entry(db: AsyncSession, entry: KnowledgeBaseEntry, **changes) -> KnowledgeBaseEntry:
    for key, value in changes.items():
        setattr(entry, key, value)
    await db.flush()
    return entry


async def delete_knowledge_entry(db: AsyncSession, entry: KnowledgeBaseEntry) -> None:
    await db.delete(entry)
    await db.flush()
