from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from concierge.core.subscription import (
    SubscriptionStatus,
    effective_tier,
    enforce_grace_period,
    evaluate_subscription,
    record_payment_failure,
    record_payment_success,
)
from concierge.core.tiers import Tier

from conftest import make_business, make_subscription

NOW = datetime(2026, 5, 10, 9, 0, tzinfo=timezone.utc)


def test_no_subscription_has_no_access():
    state = evaluate_subscription(None, NOW)
    assert state.has_access is False
    assert state.reason == "no_subscription"


def test_active_subscription():
    business = make_business(tier="premium")
    state = evaluate_subscription(make_subscription(business), NOW)
    assert state.has_access is True
    assert state.reason == "active"
    assert state.warning is None


def test_inside_grace_period_keeps_access_with_warning():
    business = make_business(tier="professional")
    sub = make_subscription(business, payment_failed_at=NOW - timedelta(days=4))

    state = evaluate_subscription(sub, NOW, grace_days=5)
    assert state.has_access is True
    assert state.warning == "payment_failed"
    assert state.grace_period_ends == NOW + timedelta(days=1)
    assert effective_tier(business, sub, NOW) is Tier.PROFESSIONAL


def test_after_grace_period_degrades_to_starter():
    business = make_business(tier="professional")
    sub = make_subscription(business, payment_failed_at=NOW - timedelta(days=6))

    state = evaluate_subscription(sub, NOW, grace_days=5)
    assert state.has_access is False
    assert state.reason == "grace_period_expired"
    assert effective_tier(business, sub, NOW) is Tier.STARTER


def test_cancelled_and_expired():
    business = make_business()
    cancelled = make_subscription(business, status="cancelled")
    assert evaluate_subscription(cancelled, NOW).reason == "cancelled"

    lapsed = make_subscription(business, cancel_at_period_end=True, end_date=NOW - timedelta(days=1))
    assert evaluate_subscription(lapsed, NOW).reason == "expired"


def test_effective_tier_without_subscription_uses_stored_tier():
    assert effective_tier(make_business(tier="premium"), None, NOW) is Tier.PREMIUM
    assert effective_tier(make_business(tier="bogus"), None, NOW) is Tier.STARTER


@pytest.mark.asyncio
async def test_first_failure_opens_grace_period_once():
    db = AsyncMock()
    business = make_business(tier="professional")
    sub = make_subscription(business)

    ends = await record_payment_failure(db, business, sub, now=NOW)
    assert ends == NOW + timedelta(days=5)
    assert sub.status == SubscriptionStatus.PAST_DUE.value
    assert sub.payment_status == "failed"
    assert sub.payment_attempts == 1

    later = NOW + timedelta(days=2)
    again = await record_payment_failure(db, business, sub, now=later)
    assert again == NOW + timedelta(days=5)
    assert sub.payment_failed_at == NOW
    assert sub.payment_attempts == 2


@pytest.mark.asyncio
async def test_enforce_then_payment_success_restores_tier():
    db = AsyncMock()
    business = make_business(tier="professional")
    sub = make_subscription(business, tier="professional")
    await record_payment_failure(db, business, sub, now=NOW)

    assert await enforce_grace_period(db, business, sub, now=NOW + timedelta(days=3)) is False
    assert await enforce_grace_period(db, business, sub, now=NOW + timedelta(days=6)) is True
    assert business.tier == "starter"
    assert sub.status == SubscriptionStatus.SUSPENDED.value
    assert evaluate_subscription(sub, NOW + timedelta(days=6)).reason == "access_revoked"

    # Already degraded: a second sweep is a no-op.
    assert await enforce_grace_period(db, business, sub, now=NOW + timedelta(days=7)) is False

    await record_payment_success(db, business, sub, now=NOW + timedelta(days=8))
    assert business.tier == "professional"
    assert sub.status == SubscriptionStatus.ACTIVE.value
    assert evaluate_subscription(sub, NOW + timedelta(days=8)).has_access is True
