from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

import concierge.api.v1.widget as widget_api
from concierge.api.errors import status_for
from concierge.core.errors import (
    AccessDenied,
    AuthenticationFailed,
    ConflictError,
    EmailTaken,
    NotFoundError,
    RoutingKeyConflict,
    TierLimitReached,
    TierRequired,
    ValidationFailed,
)
from concierge.core.tiers import InvalidTier


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (ValidationFailed("bad"), 400),
        (EmailTaken("taken"), 400),
        (InvalidTier("nope"), 400),
        (AuthenticationFailed(), 401),
        (AccessDenied("no"), 403),
        (TierRequired("upgrade"), 403),
        (TierLimitReached("full"), 403),
        (NotFoundError("gone"), 404),
        (ConflictError("dup"), 409),
        (RoutingKeyConflict("taken"), 409),
    ],
)
def test_status_for_domain_errors(exc, status):
    assert status_for(exc) == status


def test_authentication_failed_never_reveals_cause():
    assert AuthenticationFailed().message == "Unauthorized"


@pytest.mark.asyncio
async def test_unexpected_error_is_500_without_details(client, db, monkeypatch):
    monkeypatch.setattr(widget_api, "rate_conversation", AsyncMock(side_effect=RuntimeError("db password is hunter2")))

    resp = await client.post("/api/widget/rate", json={"conversationId": str(uuid4()), "rating": 4})

    assert resp.status_code == 500
    assert resp.json() == {"error": "internal_error", "message": "Internal server error"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_body(client):
    resp = await client.get("/api/nope")

    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
