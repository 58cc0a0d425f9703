"""
Operator endpoints. Every route here requires an administrator principal.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import current_admin
from concierge.core.auth import Principal
from concierge.core.crud import get_business, get_subscription, list_businesses, purge_business, set_business_tier
from concierge.core.errors import NotFoundError
from concierge.core.subscription import evaluate_subscription, record_payment_failure, record_payment_success
from concierge.core.tiers import Tier
from concierge.db import get_db

from .schemas import (
    BusinessResponse,
    PaymentEventRequest,
    PaymentEventResponse,
    PurgeResponse,
    TierUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/businesses", response_model=list[BusinessResponse])
async def admin_list_businesses(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: Principal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessResponse]:
    businesses = await list_businesses(db, limit=limit, offset=offset)
    return [BusinessResponse.model_validate(b) for b in businesses]


@router.delete("/businesses/{business_id}", response_model=PurgeResponse)
async def admin_purge_business(
    business_id: UUID,
    admin: Principal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
) -> PurgeResponse:
    deleted = await purge_business(db, business_id)
    logger.warning("Admin %s purged business %s", admin.email, business_id)
    return PurgeResponse(business_id=business_id, deleted=deleted)


@router.post("/businesses/{business_id}/tier", response_model=BusinessResponse)
async def admin_set_tier(
    business_id: UUID,
    payload: TierUpdateRequest,
    admin: Principal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
) -> BusinessResponse:
    business = await set_business_tier(db, business_id, Tier.parse(payload.tier))
    logger.info("Admin %s set business %s tier to %s", admin.email, business_id, business.tier)
    return BusinessResponse.model_validate(business)


@router.post("/businesses/{business_id}/payment-events", response_model=PaymentEventResponse)
async def admin_payment_event(
    business_id: UUID,
    payload: PaymentEventRequest,
    admin: Principal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
) -> PaymentEventResponse:
    business = await get_business(db, business_id)
    subscription = await get_subscription(db, business_id) if business is not None else None
    if business is None or subscription is None:
        raise NotFoundError("Subscription not found")

    if payload.outcome == "failed":
        await record_payment_failure(db, business, subscription)
    else:
        await record_payment_success(db, business, subscription)

    state = evaluate_subscription(subscription)
    return PaymentEventResponse(
        status=subscription.status,
        warning=state.warning,
        grace_period_ends=state.grace_period_ends,
    )
