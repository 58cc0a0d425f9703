"""
Base Channel Adapter: abstract interface for messaging-provider integrations.

To add a new channel:
1. Create a file in concierge/channels/ (e.g., instagram.py)
2. Subclass ChannelAdapter
3. Implement parse_webhook(), send()
4. Register with @register_channel("<kind>")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from concierge.core.messages import ParsedWebhook
from concierge.core.secrets import resolve_secret

logger = logging.getLogger(__name__)


class ChannelAdapter(ABC):
    """
    Base class for all channel adapters.

    Each adapter handles communication with one external messaging provider.
    """

    # Channel type identifier (e.g., "sms", "whatsapp").
    channel_type: str = ""

    # Key in the tenant's channel config blob holding the routing key.
    routing_key_field: str = ""

    # credential key -> secret name passed to resolve_secret().
    credential_secrets: dict[str, str] = {}

    def __init__(self, config: dict, credentials: dict | None = None):
        """
        Args:
            config: Tenant channel config blob (no secrets).
            credentials: Provider secrets resolved from process configuration.
        """
        self.config = config
        self.credentials = credentials or {}

    @staticmethod
    @abstractmethod
    def parse_webhook(payload: dict) -> list[ParsedWebhook]:
        """
        Normalize a raw provider payload.

        Returns:
            One ParsedWebhook per routing key found in the payload; an empty list
            when the payload carries nothing this system handles.
        """

    @abstractmethod
    async def send(self, recipient: str, text: str) -> str | None:
        """
        Send a text message.

        Returns:
            The provider's message id, or None if the provider rejected the message.
        """

    @classmethod
    def routing_key_from_config(cls, config: dict) -> str | None:
        value = config.get(cls.routing_key_field)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


# --- Channel Registry ---

# Map of channel_type -> adapter class.
# Populated by register_channel() when channel modules are imported.
CHANNEL_REGISTRY: dict[str, type[ChannelAdapter]] = {}


def register_channel(channel_type: str):
    """Decorator to register a channel adapter class."""

    def decorator(cls: type[ChannelAdapter]):
        cls.channel_type = channel_type
        CHANNEL_REGISTRY[channel_type] = cls
        return cls

    return decorator


def get_adapter_class(channel_type: str) -> type[ChannelAdapter]:
    cls = CHANNEL_REGISTRY.get(channel_type)
    if cls is None:
        available = ", ".join(CHANNEL_REGISTRY.keys()) or "(none)"
        raise ValueError(f"Unknown channel type: '{channel_type}'. Available: {available}")
    return cls


def get_channel_adapter(channel_type: str, config: dict, credentials: dict | None = None) -> ChannelAdapter:
    """
    Factory: create a channel adapter by type.

    Raises:
        ValueError: If channel_type is not registered.
    """
    return get_adapter_class(channel_type)(config, credentials)


def build_tenant_adapter(channel_type: str, tenant_slug: str, config: dict) -> ChannelAdapter:
    """Instantiate an adapter with the tenant's provider secrets resolved."""
    cls = get_adapter_class(channel_type)
    credentials = {
        key: value
        for key, secret_name in cls.credential_secrets.items()
        if (value := resolve_secret(tenant_slug, secret_name))
    }
    return cls(config, credentials)
