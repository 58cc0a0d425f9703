"""
Request-level auth dependencies and the route-classification middleware.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.errors import error_response
from concierge.core.auth import (
    Principal,
    RouteAccess,
    bearer_token,
    classify_route,
    decode_access_token,
)
from concierge.core.crud import get_business, get_subscription
from concierge.core.errors import AccessDenied, AuthenticationFailed, TierRequired
from concierge.core.subscription import SubscriptionState, effective_tier, evaluate_subscription
from concierge.core.tiers import FeatureArea, Tier, has_access, required_tier, upgrade_message
from concierge.db import get_db
from concierge.models import Business, Subscription


async def auth_gate(request: Request, call_next):
    """
    Enforce the fixed route table: tenant routes need a business principal,
    admin routes an admin principal, everything else is open.
    """
    access = classify_route(request.url.path)
    if access is RouteAccess.OPEN or request.method == "OPTIONS":
        return await call_next(request)

    try:
        principal = _principal_from_header(request)
        if principal is None:
            raise AuthenticationFailed()
        if access is RouteAccess.ADMIN and not principal.is_admin:
            raise AccessDenied("Administrator access required", required_role="admin")
        if access is RouteAccess.TENANT and principal.business_id is None:
            raise AccessDenied("Business account required", required_role="business")
    except (AuthenticationFailed, AccessDenied) as e:
        return error_response(e)

    request.state.principal = principal
    return await call_next(request)


def _principal_from_header(request: Request) -> Principal | None:
    token = bearer_token(request.headers.get("authorization"))
    if token is None:
        return None
    return decode_access_token(token)


def optional_principal(request: Request) -> Principal | None:
    """Principal if a bearer token is present. A present but invalid token is still a 401."""
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return principal
    return _principal_from_header(request)


def current_principal(principal: Principal | None = Depends(optional_principal)) -> Principal:
    if principal is None:
        raise AuthenticationFailed()
    return principal


def current_admin(principal: Principal = Depends(current_principal)) -> Principal:
    if not principal.is_admin:
        raise AccessDenied("Administrator access required", required_role="admin")
    return principal


@dataclass
class TenantContext:
    principal: Principal
    business: Business
    subscription: Subscription | None
    tier: Tier
    state: SubscriptionState


async def current_tenant(
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    if principal.business_id is None:
        raise AccessDenied("Business account required", required_role="business")
    business = await get_business(db, principal.business_id)
    if business is None or not business.is_active:
        raise AuthenticationFailed()
    subscription = await get_subscription(db, business.id)
    return TenantContext(
        principal=principal,
        business=business,
        subscription=subscription,
        tier=effective_tier(business, subscription),
        state=evaluate_subscription(subscription),
    )


def require_area(area: FeatureArea):
    """Dependency factory: 403 with the minimum tier unless the tenant's tier covers `area`."""

    async def dependency(tenant: TenantContext = Depends(current_tenant)) -> TenantContext:
        if not has_access(tenant.tier, area):
            raise TierRequired(
                upgrade_message(area),
                area=area.value,
                required_tier=required_tier(area).value,
                current_tier=tenant.tier.value,
            )
        return tenant

    return dependency
