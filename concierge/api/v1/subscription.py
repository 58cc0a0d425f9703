from __future__ import annotations

from fastapi import APIRouter, Depends

from concierge.api.deps import TenantContext, current_tenant
from concierge.core.subscription import SubscriptionStatus

from .schemas import SubscriptionResponse

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("", response_model=SubscriptionResponse)
async def get_subscription(tenant: TenantContext = Depends(current_tenant)) -> SubscriptionResponse:
    sub = tenant.subscription
    if sub is None:
        # Accounts created before subscriptions existed are served as trials.
        return SubscriptionResponse(
            tier=tenant.business.tier,
            effective_tier=tenant.tier.value,
            status=SubscriptionStatus.TRIAL.value,
        )
    return SubscriptionResponse(
        tier=sub.tier,
        effective_tier=tenant.tier.value,
        status=sub.status,
        billing_cycle=sub.billing_cycle,
        payment_status=sub.payment_status,
        start_date=sub.start_date,
        end_date=sub.end_date,
        cancel_at_period_end=sub.cancel_at_period_end,
        warning=tenant.state.warning,
        grace_period_ends=tenant.state.grace_period_ends,
    )
