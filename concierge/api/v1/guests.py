from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import TenantContext, require_area
from concierge.core.crud import list_guest_profiles
from concierge.core.tiers import FeatureArea
from concierge.db import get_db

from .schemas import GuestProfileResponse

router = APIRouter(prefix="/api/guests", tags=["guests"])


@router.get("", response_model=list[GuestProfileResponse])
async def list_guests(
    limit: int = Query(default=50, ge=1, le=200),
    tenant: TenantContext = Depends(require_area(FeatureArea.GUEST_INTELLIGENCE)),
    db: AsyncSession = Depends(get_db),
) -> list[GuestProfileResponse]:
    guests = await list_guest_profiles(db, tenant.business.id, limit=limit)
    return [GuestProfileResponse.model_validate(g) for g in guests]
