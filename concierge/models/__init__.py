from concierge.models.base import Base
from concierge.models.business import AdminUser, Business
from concierge.models.channel import ChannelConfig
from concierge.models.conversation import Conversation, Message
from concierge.models.guest import GuestProfile
from concierge.models.knowledge import KnowledgeBaseEntry
from concierge.models.subscription import Subscription

__all__ = [
    "AdminUser",
    "Base",
    "Business",
    "ChannelConfig",
    "Conversation",
    "GuestProfile",
    "KnowledgeBaseEntry",
    "Message",
    "Subscription",
]
