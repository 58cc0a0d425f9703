from __future__ import annotations

import pytest

from concierge.channels.base import (
    CHANNEL_REGISTRY,
    ChannelAdapter,
    build_tenant_adapter,
    get_channel_adapter,
    register_channel,
)
from concierge.channels.sms import TwilioSMSAdapter


@pytest.fixture(autouse=True)
def _restore_registry():
    saved = dict(CHANNEL_REGISTRY)
    yield
    CHANNEL_REGISTRY.clear()
    CHANNEL_REGISTRY.update(saved)


def test_builtin_channels_are_registered():
    assert CHANNEL_REGISTRY["sms"] is TwilioSMSAdapter
    assert "whatsapp" in CHANNEL_REGISTRY


def test_register_channel_registers_class():
    @register_channel("test")
    class TestAdapter(ChannelAdapter):
        routing_key_field = "number"

        @staticmethod
        def parse_webhook(payload: dict):
            return []

        async def send(self, recipient: str, text: str):
            return None

    assert CHANNEL_REGISTRY["test"] is TestAdapter
    assert TestAdapter.channel_type == "test"
    assert TestAdapter.routing_key_from_config({"number": " 42 "}) == "42"
    assert TestAdapter.routing_key_from_config({"number": ""}) is None


def test_get_channel_adapter_unknown_type_raises():
    with pytest.raises(ValueError):
        get_channel_adapter("carrier-pigeon", {})


def test_channel_adapter_is_abstract():
    with pytest.raises(TypeError):
        ChannelAdapter({})


def test_build_tenant_adapter_resolves_credentials(monkeypatch):
    monkeypatch.setenv("CONCIERGE_SECRET_KONA_SURF_LODGE_TWILIO_AUTH_TOKEN", "tw-secret")
    adapter = build_tenant_adapter("sms", "kona-surf-lodge", {"phone_number": "+1808"})
    assert isinstance(adapter, TwilioSMSAdapter)
    assert adapter.credentials == {"auth_token": "tw-secret"}
    assert adapter.config == {"phone_number": "+1808"}
