"""
Subscription rules: payment-failure grace period and tier degradation.

A first payment failure opens a grace period (Settings.grace_period_days). Inside
the window the tenant keeps its tier and gets a `payment_failed` warning; after it
the tenant is served with starter features until a payment succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from concierge.config import get_settings
from concierge.core.tiers import Tier, normalize_tier
from concierge.models import Business, Subscription

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    PENDING = "pending"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SubscriptionState:
    has_access: bool
    reason: str
    warning: str | None = None
    grace_period_ends: datetime | None = None


def _grace_days() -> int:
    return get_settings().grace_period_days


def grace_period_end(subscription: Subscription, grace_days: int | None = None) -> datetime | None:
    if subscription.payment_failed_at is None:
        return None
    if subscription.grace_period_ends is not None:
        return subscription.grace_period_ends
    days = _grace_days() if grace_days is None else grace_days
    return subscription.payment_failed_at + timedelta(days=days)


def evaluate_subscription(
    subscription: Subscription | None,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> SubscriptionState:
    """Pure evaluation of a subscription at `now`. Does not touch the database."""
    now = now or datetime.now(timezone.utc)

    if subscription is None:
        return SubscriptionState(has_access=False, reason="no_subscription")

    if subscription.access_revoked_at is not None and subscription.access_revoked_at <= now:
        return SubscriptionState(has_access=False, reason="access_revoked")

    if subscription.status == SubscriptionStatus.CANCELLED.value:
        return SubscriptionState(has_access=False, reason="cancelled")

    grace_end = grace_period_end(subscription, grace_days)
    if grace_end is not None:
        if now > grace_end:
            return SubscriptionState(
                has_access=False,
                reason="grace_period_expired",
                grace_period_ends=grace_end,
            )
        return SubscriptionState(
            has_access=True,
            reason="active",
            warning="payment_failed",
            grace_period_ends=grace_end,
        )

    if subscription.cancel_at_period_end and subscription.end_date < now:
        return SubscriptionState(has_access=False, reason="expired")

    return SubscriptionState(has_access=True, reason="active")


def effective_tier(
    business: Business,
    subscription: Subscription | None,
    now: datetime | None = None,
) -> Tier:
    """
    Tier used by the feature guard.

    Accounts without a subscription record are trials and keep their stored tier.
    Any subscription that lost access is served as starter.
    """
    stored = normalize_tier(business.tier)
    if subscription is None:
        return stored
    state = evaluate_subscription(subscription, now)
    if not state.has_access:
        return Tier.STARTER
    return stored


async def record_payment_failure(
    db: AsyncSession,
    business: Business,
    subscription: Subscription,
    now: datetime | None = None,
) -> datetime | None:
    """Open the grace period on the first failure; count later attempts. Returns the grace end."""
    now = now or datetime.now(timezone.utc)

    if subscription.payment_failed_at is None:
        subscription.payment_failed_at = now
        subscription.grace_period_ends = now + timedelta(days=_grace_days())
        subscription.last_payment_attempt = now
        subscription.payment_attempts = 1
        subscription.payment_status = "failed"
        subscription.status = SubscriptionStatus.PAST_DUE.value
        logger.warning(
            "Payment failed for business %s; grace period until %s",
            business.id,
            subscription.grace_period_ends.isoformat(),
        )
    else:
        subscription.last_payment_attempt = now
        subscription.payment_attempts = (subscription.payment_attempts or 0) + 1
        logger.warning(
            "Payment failed again for business %s (attempt %d)",
            business.id,
            subscription.payment_attempts,
        )

    await db.flush()
    return subscription.grace_period_ends


async def record_payment_success(
    db: AsyncSession,
    business: Business,
    subscription: Subscription,
    now: datetime | None = None,
) -> None:
    now = now or datetime.now(timezone.utc)

    subscription.payment_failed_at = None
    subscription.grace_period_ends = None
    subscription.access_revoked_at = None
    subscription.last_payment_attempt = now
    subscription.payment_attempts = 0
    subscription.payment_status = "succeeded"
    subscription.status = SubscriptionStatus.ACTIVE.value
    # Restore the paid tier after a degradation.
    business.tier = normalize_tier(subscription.tier).value

    logger.info("Payment succeeded for business %s", business.id)
    await db.flush()


async def enforce_grace_period(
    db: AsyncSession,
    business: Business,
    subscription: Subscription | None,
    now: datetime | None = None,
) -> bool:
    """Persist the degradation once the grace period has expired. Returns True if applied."""
    now = now or datetime.now(timezone.utc)
    if subscription is None or subscription.access_revoked_at is not None:
        return False

    state = evaluate_subscription(subscription, now)
    if state.reason != "grace_period_expired":
        return False

    subscription.access_revoked_at = now
    subscription.status = SubscriptionStatus.SUSPENDED.value
    business.tier = Tier.STARTER.value
    logger.warning("Grace period expired for business %s; degraded to starter", business.id)
    await db.flush()
    return True
