"""
Assistant reply generation for widget chats and channel auto-replies.
"""

from __future__ import annotations

import logging

from concierge.config import get_settings
from concierge.core.brain import Brain
from concierge.core.secrets import resolve_secret
from concierge.core.tiers import Tier
from concierge.models import Business, KnowledgeBaseEntry

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I'm sorry, I'm having trouble understanding. Please try again or contact support."
)

# Reply length budget per tier.
MAX_TOKENS: dict[Tier, int] = {
    Tier.STARTER: 200,
    Tier.PROFESSIONAL: 500,
    Tier.PREMIUM: 1000,
    Tier.ENTERPRISE: 2000,
}


class PromptBuilder:
    """Builds a concierge system prompt from business profile and knowledge base."""

    @staticmethod
    def build(business: Business, knowledge: list[KnowledgeBaseEntry], channel: str = "web") -> str:
        sections: list[str] = []

        sections.append(
            f"## ROLE\nYou are the virtual concierge of {business.name}, "
            f"a {business.business_type.replace('_', ' ')}. Help guests with questions about "
            "their stay, bookings, amenities and the local area."
        )

        info = business.business_info or {}
        if info:
            lines = [f"- {key.replace('_', ' ')}: {value}" for key, value in sorted(info.items())]
            sections.append("## BUSINESS INFO\n" + "\n".join(lines))

        active = [e for e in knowledge if e.is_active]
        if active:
            kb_text = "\n\n".join(
                f"### {e.category.upper()}\nQ: {e.question}\nA: {e.answer}" for e in active
            )
            sections.append(f"## KNOWLEDGE BASE\n{kb_text}")

        style = ["1. Reply in the same language as the guest.", "2. Be warm and concise."]
        if channel in ("sms", "whatsapp"):
            style.append("3. Plain text only, no markdown. Keep replies under 3 short sentences.")
        sections.append("## OUTPUT RULES\n" + "\n".join(style))

        return "\n\n".join(sections)


async def generate_reply(
    business: Business,
    tier: Tier,
    knowledge: list[KnowledgeBaseEntry],
    history: list[dict],
    channel: str = "web",
) -> tuple[str, dict]:
    """
    Ask the LLM for the next assistant turn.

    Returns (text, metadata). LLM failures produce FALLBACK_REPLY with
    `metadata["fallback"] = True` instead of raising.
    """
    settings = get_settings()
    api_key = resolve_secret(business.slug, "llm_api_key")
    brain = Brain.from_settings(settings, api_key=api_key)
    system_prompt = PromptBuilder.build(business, knowledge, channel=channel)

    try:
        response = await brain.think(system_prompt, history, max_tokens=MAX_TOKENS[tier])
    except Exception as e:
        logger.exception("LLM reply failed for business %s: %s", business.id, e)
        return FALLBACK_REPLY, {"fallback": True}

    text = response.content.strip()
    if not text:
        return FALLBACK_REPLY, {"fallback": True, "model": response.model}
    return text, {"model": response.model, "usage": response.usage}
