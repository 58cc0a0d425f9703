from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.dialects import postgresql

import concierge.core.conversations as store
from concierge.core.conversations import DeliveryStatus, MessageRole
from concierge.core.errors import NotFoundError, TierLimitReached, ValidationFailed
from concierge.models import Message

from conftest import FakeSession


def _conversation(**overrides):
    values = dict(id=uuid4(), business_id=uuid4(), satisfaction=None, resolved=False, updated_at=None)
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def locked(monkeypatch):
    conv = _conversation()
    monkeypatch.setattr(store, "lock_conversation", AsyncMock(return_value=conv))
    return conv


@pytest.mark.asyncio
async def test_rating_with_feedback_appends_one_system_message(locked, monkeypatch):
    append = AsyncMock()
    monkeypatch.setattr(store, "append_message", append)

    conv = await store.rate_conversation(FakeSession(), locked.id, 5, "Great service")

    assert conv.satisfaction == 5
    assert conv.resolved is True
    append.assert_awaited_once()
    args = append.await_args.args
    assert args[2] is MessageRole.SYSTEM
    assert args[3] == "Customer feedback (5/5 stars): Great service"


@pytest.mark.asyncio
async def test_rating_without_feedback_appends_nothing(locked, monkeypatch):
    append = AsyncMock()
    monkeypatch.setattr(store, "append_message", append)

    await store.rate_conversation(FakeSession(), locked.id, 3, "   ")

    append.assert_not_awaited()
    assert locked.satisfaction == 3
    assert locked.resolved is True


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, True, "5"])
async def test_rating_out_of_range_is_rejected_before_any_write(rating, locked):
    with pytest.raises(ValidationFailed):
        await store.rate_conversation(FakeSession(), locked.id, rating)
    store.lock_conversation.assert_not_awaited()


@pytest.mark.asyncio
async def test_patch_touches_only_given_fields(locked):
    locked.satisfaction = 2

    await store.patch_conversation(FakeSession(), locked.id, resolved=True)
    assert locked.resolved is True
    assert locked.satisfaction == 2

    await store.patch_conversation(FakeSession(), locked.id, satisfaction=4)
    assert locked.satisfaction == 4
    assert locked.resolved is True


@pytest.mark.asyncio
async def test_patch_rejects_unknown_fields_and_bad_values(locked):
    with pytest.raises(ValidationFailed):
        await store.patch_conversation(FakeSession(), locked.id, channel="sms")
    with pytest.raises(ValidationFailed):
        await store.patch_conversation(FakeSession(), locked.id, satisfaction=9)
    with pytest.raises(ValidationFailed):
        await store.patch_conversation(FakeSession(), locked.id, resolved="yes")


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


@pytest.mark.asyncio
async def test_append_message_keeps_timestamps_strictly_increasing():
    db = FakeSession()
    future = datetime.now(timezone.utc) + timedelta(seconds=5)
    db.execute.return_value = _scalar_result(future)
    conv = _conversation()

    msg = await store.append_message(
        db, conv, MessageRole.ASSISTANT, "Mahalo!", provider_message_id="SM1", delivery_status=DeliveryStatus.SENT
    )

    assert isinstance(msg, Message)
    assert msg.created_at == future + timedelta(microseconds=1)
    assert conv.updated_at == msg.created_at
    assert msg.role == "assistant"
    assert msg.delivery_status == "sent"
    db.add.assert_called_once_with(msg)


@pytest.mark.asyncio
async def test_lock_conversation_missing_raises_not_found():
    db = FakeSession()
    db.execute.return_value = _scalar_result(None)
    with pytest.raises(NotFoundError):
        await store.lock_conversation(db, uuid4())


@pytest.mark.asyncio
async def test_conversation_by_unknown_session_is_none():
    db = FakeSession()
    db.execute.return_value = _scalar_result(None)
    assert await store.get_conversation_by_session(db, "sess-404") is None


@pytest.mark.asyncio
async def test_apply_delivery_status_returns_rowcount():
    db = FakeSession()
    db.execute.return_value = SimpleNamespace(rowcount=0)
    assert await store.apply_delivery_status(db, "SMunknown", DeliveryStatus.DELIVERED) == 0

    db.execute.return_value = SimpleNamespace(rowcount=2)
    assert await store.apply_delivery_status(db, "SMknown", DeliveryStatus.FAILED, error="30003") == 2


def _compiled(stmt):
    return stmt.compile(dialect=postgresql.dialect())


@pytest.mark.asyncio
async def test_business_inbox_query_is_scoped_to_one_tenant():
    tenant_a, tenant_b = uuid4(), uuid4()
    conv = _conversation(business_id=tenant_a)
    last = SimpleNamespace(conversation_id=conv.id, content="Mahalo!")

    rows = MagicMock()
    rows.all.return_value = [(conv, 3)]
    latest = MagicMock()
    latest.scalars.return_value.all.return_value = [last]
    db = FakeSession()
    db.execute.side_effect = [rows, latest]

    summaries = await store.list_business_conversations(db, tenant_a, limit=10)

    inbox_sql = _compiled(db.execute.await_args_list[0].args[0])
    assert "WHERE conversations.business_id = " in str(inbox_sql)
    bound_ids = [v for v in inbox_sql.params.values() if isinstance(v, UUID)]
    assert bound_ids == [tenant_a]
    assert tenant_b not in inbox_sql.params.values()

    latest_sql = _compiled(db.execute.await_args_list[1].args[0])
    assert [conv.id] in latest_sql.params.values()

    [summary] = summaries
    assert summary.conversation is conv
    assert summary.last_message is last
    assert summary.message_count == 3


@pytest.mark.asyncio
async def test_business_inbox_without_conversations_runs_one_query():
    rows = MagicMock()
    rows.all.return_value = []
    db = FakeSession()
    db.execute.return_value = rows

    assert await store.list_business_conversations(db, uuid4()) == []
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_late_sent_callback_cannot_downgrade_delivered():
    db = FakeSession()
    db.execute.return_value = SimpleNamespace(rowcount=0)

    await store.apply_delivery_status(db, "SM1", DeliveryStatus.SENT)

    sql = _compiled(db.execute.await_args.args[0])
    assert "messages.delivery_status IS NULL OR" in str(sql)
    blocked = next(v for v in sql.params.values() if isinstance(v, (list, tuple)))
    assert set(blocked) == {"delivered", "undelivered", "failed", "read"}


@pytest.mark.asyncio
async def test_read_overwrites_any_status():
    db = FakeSession()
    db.execute.return_value = SimpleNamespace(rowcount=1)

    assert await store.apply_delivery_status(db, "wamid.1", DeliveryStatus.READ) == 1

    sql = _compiled(db.execute.await_args.args[0])
    assert "NOT IN" not in str(sql)


def _count_result(value):
    result = MagicMock()
    result.scalar_one.return_value = value
    return result


@pytest.mark.asyncio
async def test_new_session_over_daily_limit_is_refused():
    db = FakeSession()
    db.execute.side_effect = [_scalar_result(None), _count_result(50)]

    with pytest.raises(TierLimitReached) as exc:
        await store.get_or_create_session_conversation(db, uuid4(), "sess-51", daily_limit=50)

    assert exc.value.extra == {"limit": 50}
    db.add.assert_not_called()
    count_sql = _compiled(db.execute.await_args_list[1].args[0])
    assert "conversations.created_at >= " in str(count_sql)
    midnight = next(v for v in count_sql.params.values() if isinstance(v, datetime))
    assert (midnight.hour, midnight.minute, midnight.second) == (0, 0, 0)


@pytest.mark.asyncio
async def test_new_session_under_daily_limit_is_created():
    db = FakeSession()
    db.execute.side_effect = [_scalar_result(None), _count_result(49)]
    business_id = uuid4()

    conv = await store.get_or_create_session_conversation(db, business_id, "sess-50", daily_limit=50)

    assert (conv.business_id, conv.session_id, conv.channel) == (business_id, "sess-50", "web")
    db.add.assert_called_once_with(conv)


@pytest.mark.asyncio
async def test_resumed_session_ignores_daily_limit():
    db = FakeSession()
    existing = _conversation()
    db.execute.return_value = _scalar_result(existing)

    assert await store.get_or_create_session_conversation(db, uuid4(), "sess-1", daily_limit=0) is existing
    assert db.execute.await_count == 1
