from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.deps import TenantContext, current_tenant
from concierge.core.auth import Principal, PrincipalKind, create_access_token, hash_password, verify_password
from concierge.core.crud import create_business, get_admin_by_email, get_business_by_email
from concierge.core.errors import AuthenticationFailed, EmailTaken
from concierge.core.tiers import Tier
from concierge.db import get_db

from .schemas import (
    AdminAuthResponse,
    AdminResponse,
    AuthResponse,
    BusinessResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    if await get_business_by_email(db, payload.email) is not None:
        raise EmailTaken("An account with this email already exists", field="email")

    business = await create_business(
        db,
        email=payload.email,
        password_hash=hash_password(payload.password),
        name=payload.business_name.strip(),
        business_type=payload.business_type,
        tier=Tier.parse(payload.tier),
    )
    logger.info("Registered business %s (%s)", business.id, business.slug)

    token = create_access_token(Principal(subject_id=business.id, email=business.email, kind=PrincipalKind.BUSINESS))
    return AuthResponse(token=token, business=BusinessResponse.model_validate(business))


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    business = await get_business_by_email(db, payload.email)
    if business is None or not business.is_active or not verify_password(payload.password, business.password_hash):
        raise AuthenticationFailed()

    logger.info("Business %s logged in", business.id)
    token = create_access_token(Principal(subject_id=business.id, email=business.email, kind=PrincipalKind.BUSINESS))
    return AuthResponse(token=token, business=BusinessResponse.model_validate(business))


@router.post("/admin/login", response_model=AdminAuthResponse)
async def admin_login(payload: LoginRequest, db: AsyncSession = Depends(get_db)) -> AdminAuthResponse:
    admin = await get_admin_by_email(db, payload.email)
    if admin is None or not admin.is_active or not verify_password(payload.password, admin.password_hash):
        raise AuthenticationFailed()

    logger.info("Admin %s logged in", admin.email)
    token = create_access_token(
        Principal(subject_id=admin.id, email=admin.email, kind=PrincipalKind.ADMIN, role=admin.role)
    )
    return AdminAuthResponse(token=token, user=AdminResponse.model_validate(admin))


@router.get("/me", response_model=MeResponse)
async def me(tenant: TenantContext = Depends(current_tenant)) -> MeResponse:
    return MeResponse(
        business=BusinessResponse.model_validate(tenant.business),
        effective_tier=tenant.tier.value,
        warning=tenant.state.warning,
        grace_period_ends=tenant.state.grace_period_ends,
    )
