from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import TenantContext, require_area
from concierge.core.crud import (
    count_knowledge_entries,
    create_knowledge_entry,
    delete_knowledge_entry,
    get_knowledge_entry,
    list_knowledge_entries,
    update_knowledge_entry,
)
from concierge.core.errors import TierLimitReached
from concierge.core.tiers import TIER_LIMITS, FeatureArea
from concierge.db import get_db

from .schemas import (
    KnowledgeEntryCreate,
    KnowledgeEntryResponse,
    KnowledgeEntryUpdate,
    KnowledgeListResponse,
)

router = APIRouter(prefix="/api/knowledge-base", tags=["knowledge-base"])

tenant_with_kb = require_area(FeatureArea.KNOWLEDGE_BASE)


@router.get("", response_model=KnowledgeListResponse)
async def list_entries(
    category: str | None = Query(default=None),
    language: str | None = Query(default=None),
    is_active: bool | None = Query(default=None, alias="isActive"),
    tenant: TenantContext = Depends(tenant_with_kb),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeListResponse:
    entries = await list_knowledge_entries(
        db, tenant.business.id, category=category, language=language, is_active=is_active
    )
    return KnowledgeListResponse(
        items=[KnowledgeEntryResponse.model_validate(e) for e in entries],
        categories=sorted({e.category for e in entries}),
        limit=TIER_LIMITS[tenant.tier].knowledge_base_items,
    )


@router.post("", response_model=KnowledgeEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_entry(
    payload: KnowledgeEntryCreate,
    tenant: TenantContext = Depends(tenant_with_kb),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeEntryResponse:
    limit = TIER_LIMITS[tenant.tier].knowledge_base_items
    if await count_knowledge_entries(db, tenant.business.id) >= limit:
        raise TierLimitReached(
            f"Knowledge base limit reached ({limit} items on the {tenant.tier.value} plan)",
            limit=limit,
            current_tier=tenant.tier.value,
        )
    entry = await create_knowledge_entry(db, tenant.business.id, **payload.model_dump())
    return KnowledgeEntryResponse.model_validate(entry)


@router.patch("/{entry_id}", response_model=KnowledgeEntryResponse)
async def update_entry(
    entry_id: UUID,
    payload: KnowledgeEntryUpdate,
    tenant: TenantContext = Depends(tenant_with_kb),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeEntryResponse:
    entry = await get_knowledge_entry(db, tenant.business.id, entry_id)
    entry = await update_knowledge_entry(db, entry, **payload.model_dump(exclude_unset=True))
    return KnowledgeEntryResponse.model_validate(entry)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(
    entry_id: UUID,
    tenant: TenantContext = Depends(tenant_with_kb),
    db: AsyncSession = Depends(get_db),
) -> None:
    entry = await get_knowledge_entry(db, tenant.business.id, entry_id)
    await delete_knowledge_entry(db, entry)
