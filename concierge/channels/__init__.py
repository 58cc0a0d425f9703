from concierge.channels.base import (
    CHANNEL_REGISTRY,
    ChannelAdapter,
    build_tenant_adapter,
    get_adapter_class,
    get_channel_adapter,
    register_channel,
)

# Import adapters for registration side effects.
from concierge.channels import sms, whatsapp  # noqa: E402,F401

__all__ = [
    "CHANNEL_REGISTRY",
    "ChannelAdapter",
    "build_tenant_adapter",
    "get_adapter_class",
    "get_channel_adapter",
    "register_channel",
]
