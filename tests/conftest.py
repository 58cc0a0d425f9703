from __future__ import annotations

import os

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from concierge.core.auth import Principal, PrincipalKind, create_access_token
from concierge.db import get_db
from concierge.main import app


class FakeSession:
    """AsyncSession stand-in whose `begin_nested()` works as an async context manager."""

    def __init__(self):
        self.add = MagicMock()
        self.execute = AsyncMock()
        self.flush = AsyncMock()
        self.commit = AsyncMock()
        self.rollback = AsyncMock()
        self.delete = AsyncMock()
        nested = MagicMock()
        nested.__aenter__ = AsyncMock(return_value=None)
        nested.__aexit__ = AsyncMock(return_value=False)
        self.begin_nested = MagicMock(return_value=nested)


def make_business(**overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        id=uuid4(),
        email="owner@kona-surf.com",
        password_hash="",
        slug="kona-surf-lodge",
        name="Kona Surf Lodge",
        business_type="hotel",
        tier="starter",
        primary_color="#0891b2",
        logo_url=None,
        welcome_message="Aloha! Welcome to Kona Surf Lodge. How can I help you today?",
        business_info={},
        is_active=True,
        created_at=now,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_subscription(business, **overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        business_id=business.id,
        tier=business.tier,
        status="active",
        billing_cycle="monthly",
        payment_status=None,
        start_date=now - timedelta(days=10),
        end_date=now + timedelta(days=20),
        cancel_at_period_end=False,
        cancelled_at=None,
        payment_failed_at=None,
        grace_period_ends=None,
        last_payment_attempt=None,
        payment_attempts=0,
        access_revoked_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def business_token(business) -> str:
    return create_access_token(Principal(subject_id=business.id, email=business.email))


def admin_token() -> str:
    return create_access_token(
        Principal(subject_id=uuid4(), email="ops@lani.com", kind=PrincipalKind.ADMIN, role="admin")
    )


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    session = FakeSession()

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield session
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def tenant(monkeypatch):
    """Authenticated starter-tier business resolved by the tenant dependency."""
    import concierge.api.deps as deps

    business = make_business()
    subscription = make_subscription(business)
    monkeypatch.setattr(deps, "get_business", AsyncMock(return_value=business))
    monkeypatch.setattr(deps, "get_subscription", AsyncMock(return_value=subscription))
    return SimpleNamespace(business=business, subscription=subscription, headers=auth_header(business_token(business)))
