from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from concierge.api.deps import TenantContext, current_tenant
from concierge.core.tiers import TIER_LIMITS, access_map, area_for_route, has_access, required_tier, upgrade_message

from .schemas import FeaturesResponse, RouteCheckResponse

router = APIRouter(prefix="/api/features", tags=["features"])


@router.get("", response_model=FeaturesResponse)
async def get_features(tenant: TenantContext = Depends(current_tenant)) -> FeaturesResponse:
    limits = TIER_LIMITS[tenant.tier]
    return FeaturesResponse(
        tier=tenant.tier.value,
        areas=access_map(tenant.tier),
        knowledge_base_items=limits.knowledge_base_items,
        conversations_per_day=limits.conversations_per_day,
        channels=list(limits.channels),
        warning=tenant.state.warning,
    )


@router.get("/check", response_model=RouteCheckResponse)
async def check_route(
    route: str = Query(min_length=1),
    tenant: TenantContext = Depends(current_tenant),
) -> RouteCheckResponse:
    """Evaluate the guard for a dashboard route, the same way the server does."""
    area = area_for_route(route)
    if area is None:
        return RouteCheckResponse(route=route, allowed=True)
    allowed = has_access(tenant.tier, area)
    return RouteCheckResponse(
        route=route,
        allowed=allowed,
        area=area.value,
        required_tier=required_tier(area).value,
        message=None if allowed else upgrade_message(area),
    )
