from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

import concierge.api.v1.widget as widget_api
from concierge.core.conversations import MessageRole
from concierge.core.errors import NotFoundError, TierLimitReached
from conftest import make_business


def _conversation(business_id):
    now = datetime.now(timezone.utc)
    return SimpleNamespace(id=uuid4(), business_id=business_id, updated_at=now, created_at=now)


@pytest.fixture
def chat_env(db, monkeypatch):
    """Widget chat collaborators, each recording its call into `events`."""
    business = make_business()
    conv = _conversation(business.id)
    events: list[str] = []

    def _record(name, value=None):
        async def _side_effect(*args, **kwargs):
            events.append(name)
            return value

        return _side_effect

    async def _append(db, conv, role, content, **kwargs):
        events.append(f"append:{role.value}")

    env = SimpleNamespace(
        business=business,
        conv=conv,
        events=events,
        append=AsyncMock(side_effect=_append),
        generate=AsyncMock(side_effect=_record("llm", ("The pool is open 7am-10pm.", {"model": "gpt-4o-mini"}))),
    )
    db.commit.side_effect = _record("commit")
    monkeypatch.setattr(widget_api, "get_business", AsyncMock(return_value=business))
    monkeypatch.setattr(widget_api, "get_subscription", AsyncMock(return_value=None))
    monkeypatch.setattr(
        widget_api, "get_or_create_session_conversation", AsyncMock(side_effect=_record("lock", conv))
    )
    monkeypatch.setattr(widget_api, "lock_conversation", AsyncMock(side_effect=_record("lock", conv)))
    monkeypatch.setattr(widget_api, "append_message", env.append)
    monkeypatch.setattr(widget_api, "list_knowledge_entries", AsyncMock(return_value=[]))
    monkeypatch.setattr(widget_api, "get_history", AsyncMock(return_value=[]))
    monkeypatch.setattr(widget_api, "generate_reply", env.generate)
    return env


def _chat_body(env):
    return {"businessId": str(env.business.id), "sessionId": "sess_1", "message": "When is the pool open?"}


@pytest.mark.asyncio
async def test_widget_chat_stores_both_turns(client, chat_env):
    resp = await client.post("/api/widget/chat", json=_chat_body(chat_env))

    assert resp.status_code == 200
    assert resp.json() == {"conversationId": str(chat_env.conv.id), "reply": "The pool is open 7am-10pm."}
    roles = [call.args[2] for call in chat_env.append.await_args_list]
    assert roles == [MessageRole.USER, MessageRole.ASSISTANT]
    assert chat_env.generate.await_args.kwargs["channel"] == "web"


@pytest.mark.asyncio
async def test_widget_chat_commits_before_calling_the_llm(client, chat_env):
    resp = await client.post("/api/widget/chat", json=_chat_body(chat_env))

    assert resp.status_code == 200
    assert chat_env.events == ["lock", "append:user", "commit", "llm", "lock", "append:assistant"]


@pytest.mark.asyncio
async def test_widget_chat_passes_the_daily_allowance(client, chat_env):
    await client.post("/api/widget/chat", json=_chat_body(chat_env))

    call = widget_api.get_or_create_session_conversation.await_args
    assert call.kwargs["daily_limit"] == 50


@pytest.mark.asyncio
async def test_widget_chat_over_daily_allowance_is_403(client, chat_env, monkeypatch):
    refuse = AsyncMock(side_effect=TierLimitReached("Daily limit reached (50/day). Resets at midnight.", limit=50))
    monkeypatch.setattr(widget_api, "get_or_create_session_conversation", refuse)

    resp = await client.post("/api/widget/chat", json=_chat_body(chat_env))

    assert resp.status_code == 403
    assert resp.json()["error"] == "tier_limit_reached"
    chat_env.append.assert_not_awaited()
    chat_env.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_widget_chat_unknown_business_is_404(client, db, monkeypatch):
    monkeypatch.setattr(widget_api, "get_business", AsyncMock(return_value=None))

    resp = await client.post(
        "/api/widget/chat", json={"businessId": str(uuid4()), "sessionId": "s", "message": "hi"}
    )

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_widget_rating(client, db, monkeypatch):
    rate = AsyncMock()
    monkeypatch.setattr(widget_api, "rate_conversation", rate)
    conversation_id = uuid4()

    resp = await client.post(
        "/api/widget/rate", json={"conversationId": str(conversation_id), "rating": 5, "feedback": "Mahalo!"}
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Thank you for your feedback!"}
    assert rate.await_args.args[1:] == (conversation_id, 5, "Mahalo!")


@pytest.mark.asyncio
async def test_widget_rating_out_of_range_is_400(client, db):
    resp = await client.post("/api/widget/rate", json={"conversationId": str(uuid4()), "rating": 6})

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


@pytest.mark.asyncio
async def test_widget_rating_unknown_conversation_is_404(client, db, monkeypatch):
    monkeypatch.setattr(widget_api, "rate_conversation", AsyncMock(side_effect=NotFoundError("Conversation not found")))

    resp = await client.post("/api/widget/rate", json={"conversationId": str(uuid4()), "rating": 3})

    assert resp.status_code == 404
    assert resp.json() == {"error": "not_found", "message": "Conversation not found"}
