from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from concierge.core.conversations import DeliveryStatus, MessageRole
from concierge.workers.billing import enforce_grace_periods
from concierge.workers.replies import _send_auto_reply
from conftest import FakeSession, make_business, make_subscription


def _rows(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


@pytest.mark.asyncio
async def test_grace_sweep_degrades_only_expired_tenants():
    now = datetime.now(timezone.utc)
    expired = make_business(tier="professional")
    expired_sub = make_subscription(expired, tier="professional", payment_failed_at=now - timedelta(days=6))
    in_grace = make_business(tier="premium")
    in_grace_sub = make_subscription(in_grace, tier="premium", payment_failed_at=now - timedelta(days=2))

    db = FakeSession()
    db.execute.return_value = _rows([(expired, expired_sub), (in_grace, in_grace_sub)])

    degraded = await enforce_grace_periods(db, now)

    assert degraded == 1
    assert expired.tier == "starter"
    assert expired_sub.access_revoked_at == now
    assert expired_sub.status == "suspended"
    assert in_grace.tier == "premium"
    assert in_grace_sub.access_revoked_at is None


@pytest.fixture
def reply_env(monkeypatch):
    """Patch every collaborator of the auto-reply task and return the mocks."""
    session = FakeSession()

    @asynccontextmanager
    async def _fake_scope():
        yield session

    business = make_business(tier="professional")
    conv = SimpleNamespace(id=uuid4(), business_id=business.id, channel="sms", external_contact="+18085550100")
    config = SimpleNamespace(channel="sms", is_active=True, config={"phone_number": "+18085550199"})
    adapter = SimpleNamespace(send=AsyncMock(return_value="SM123"))

    env = SimpleNamespace(
        business=business,
        conv=conv,
        adapter=adapter,
        append=AsyncMock(),
        build_adapter=MagicMock(return_value=adapter),
        get_conversation=AsyncMock(return_value=conv),
    )
    monkeypatch.setattr("concierge.db.session_scope", _fake_scope)
    monkeypatch.setattr("concierge.core.conversations.get_conversation", env.get_conversation)
    monkeypatch.setattr("concierge.core.conversations.get_history", AsyncMock(return_value=[]))
    monkeypatch.setattr("concierge.core.conversations.lock_conversation", AsyncMock(return_value=conv))
    monkeypatch.setattr("concierge.core.conversations.append_message", env.append)
    monkeypatch.setattr("concierge.core.crud.get_business", AsyncMock(return_value=business))
    monkeypatch.setattr("concierge.core.crud.get_subscription", AsyncMock(return_value=None))
    monkeypatch.setattr("concierge.core.crud.list_channel_configs", AsyncMock(return_value=[config]))
    monkeypatch.setattr("concierge.core.crud.list_knowledge_entries", AsyncMock(return_value=[]))
    monkeypatch.setattr(
        "concierge.core.replies.generate_reply", AsyncMock(return_value=("Aloha!", {"model": "m"}))
    )
    monkeypatch.setattr("concierge.channels.build_tenant_adapter", env.build_adapter)
    return env


@pytest.mark.asyncio
async def test_auto_reply_sends_and_stores_provider_id(reply_env):
    message_id = uuid4()

    provider_id = await _send_auto_reply(reply_env.conv.id, message_id)

    assert provider_id == "SM123"
    reply_env.adapter.send.assert_awaited_once_with("+18085550100", "Aloha!")
    adapter_config = reply_env.build_adapter.call_args.args[2]
    assert adapter_config["status_callback"].endswith("/api/channels/sms/status")

    call = reply_env.append.await_args
    assert call.args[2] is MessageRole.ASSISTANT
    assert call.kwargs["provider_message_id"] == "SM123"
    assert call.kwargs["delivery_status"] is DeliveryStatus.SENT
    assert call.kwargs["metadata"]["in_reply_to"] == str(message_id)


@pytest.mark.asyncio
async def test_auto_reply_records_failed_send(reply_env):
    reply_env.adapter.send.return_value = None

    assert await _send_auto_reply(reply_env.conv.id, uuid4()) is None
    assert reply_env.append.await_args.kwargs["delivery_status"] is DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_auto_reply_skips_missing_conversation(reply_env):
    reply_env.get_conversation.return_value = None

    assert await _send_auto_reply(uuid4(), uuid4()) is None
    reply_env.adapter.send.assert_not_awaited()
    reply_env.append.assert_not_awaited()
