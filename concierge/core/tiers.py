"""
Tier model and feature-access guard.

Tiers are totally ordered: starter < professional < premium < enterprise.
Every gated area declares a minimum tier in FEATURE_AREAS; `has_access` is the
single predicate used by the API and exposed to rendering clients via /features.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from concierge.core.errors import ValidationFailed

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value: "Tier | str") -> "Tier":
        """Strict conversion. Raises InvalidTier for anything outside the enumeration."""
        if isinstance(value, Tier):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidTier(f"Unknown tier: {value!r}", tier=value)


class InvalidTier(ValidationFailed):
    code = "invalid_tier"


TIER_ORDER: tuple[Tier, ...] = (Tier.STARTER, Tier.PROFESSIONAL, Tier.PREMIUM, Tier.ENTERPRISE)


class FeatureArea(str, Enum):
    CONVERSATIONS = "conversations"
    KNOWLEDGE_BASE = "knowledge_base"
    WIDGET = "widget"
    ANALYTICS = "analytics"
    MULTI_CHANNEL = "multi_channel"
    GUEST_INTELLIGENCE = "guest_intelligence"
    REVENUE_OPTIMIZATION = "revenue_optimization"
    API_ACCESS = "api_access"
    CUSTOM_AI_TRAINING = "custom_ai_training"
    SSO = "sso"
    AUDIT_LOGS = "audit_logs"


FEATURE_AREAS: dict[FeatureArea, Tier] = {
    FeatureArea.CONVERSATIONS: Tier.STARTER,
    FeatureArea.KNOWLEDGE_BASE: Tier.STARTER,
    FeatureArea.WIDGET: Tier.STARTER,
    FeatureArea.ANALYTICS: Tier.STARTER,
    FeatureArea.MULTI_CHANNEL: Tier.PROFESSIONAL,
    FeatureArea.GUEST_INTELLIGENCE: Tier.PROFESSIONAL,
    FeatureArea.REVENUE_OPTIMIZATION: Tier.PROFESSIONAL,
    FeatureArea.API_ACCESS: Tier.PREMIUM,
    FeatureArea.CUSTOM_AI_TRAINING: Tier.PREMIUM,
    FeatureArea.SSO: Tier.ENTERPRISE,
    FeatureArea.AUDIT_LOGS: Tier.ENTERPRISE,
}

# Dashboard sections rendered behind an upgrade prompt.
ROUTE_AREAS: dict[str, FeatureArea] = {
    "/channels": FeatureArea.MULTI_CHANNEL,
    "/guests": FeatureArea.GUEST_INTELLIGENCE,
    "/revenue": FeatureArea.REVENUE_OPTIMIZATION,
}

UPGRADE_MESSAGES: dict[FeatureArea, str] = {
    FeatureArea.MULTI_CHANNEL: "Multi-channel integration is available in Professional and Premium plans",
    FeatureArea.GUEST_INTELLIGENCE: "Guest profiles are available in Professional and Premium plans",
    FeatureArea.REVENUE_OPTIMIZATION: "Revenue optimization is available in Professional and Premium plans",
}


@dataclass(frozen=True)
class TierLimits:
    knowledge_base_items: int
    conversations_per_day: int
    channels: tuple[str, ...]


TIER_LIMITS: dict[Tier, TierLimits] = {
    Tier.STARTER: TierLimits(knowledge_base_items=50, conversations_per_day=50, channels=("web",)),
    Tier.PROFESSIONAL: TierLimits(
        knowledge_base_items=1000,
        conversations_per_day=500,
        channels=("web", "sms", "whatsapp"),
    ),
    Tier.PREMIUM: TierLimits(
        knowledge_base_items=5000,
        conversations_per_day=1000,
        channels=("web", "sms", "whatsapp", "instagram", "facebook"),
    ),
    Tier.ENTERPRISE: TierLimits(
        knowledge_base_items=10000,
        conversations_per_day=5000,
        channels=("web", "sms", "whatsapp", "instagram", "facebook"),
    ),
}


def normalize_tier(value: "Tier | str | None") -> Tier:
    """
    Read-side normalization for stored tier values.

    Unrecognized or empty values are a data-quality defect: they are logged and
    mapped to the lowest tier, never to an unlimited one.
    """
    try:
        return Tier.parse(value)  # type: ignore[arg-type]
    except InvalidTier:
        logger.warning("Unrecognized tier value %r normalized to %s", value, Tier.STARTER.value)
        return Tier.STARTER


def tier_allows(tier: Tier, required: Tier) -> bool:
    return tier.rank >= required.rank


def required_tier(area: FeatureArea | str) -> Tier:
    return FEATURE_AREAS[FeatureArea(area)]


def has_access(tier: "Tier | str | None", area: FeatureArea | str) -> bool:
    """
    Pure access predicate.

    `None` means the tier is not known yet and is denied. Any other value that is
    not a valid tier is evaluated as starter.
    """
    if tier is None:
        return False
    try:
        effective = Tier.parse(tier)
    except InvalidTier:
        effective = Tier.STARTER
    return tier_allows(effective, required_tier(area))


def access_map(tier: "Tier | str | None") -> dict[str, bool]:
    return {area.value: has_access(tier, area) for area in FEATURE_AREAS}


def area_for_route(path: str) -> FeatureArea | None:
    for prefix, area in ROUTE_AREAS.items():
        if path == prefix or path.startswith(prefix + "/"):
            return area
    return None


def upgrade_message(area: FeatureArea | str) -> str:
    return UPGRADE_MESSAGES.get(FeatureArea(area), "This feature requires an upgrade to a higher plan")


def channel_allowed(tier: "Tier | str | None", channel: str) -> bool:
    if tier is None:
        return False
    return channel in TIER_LIMITS[normalize_tier(tier)].channels
