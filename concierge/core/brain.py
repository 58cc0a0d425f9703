from __future__ import annotations

from dataclasses import dataclass

import litellm


@dataclass
class BrainResponse:
    content: str
    model: str
    usage: dict


class Brain:
    """
    Single interface for any LLM provider via LiteLLM.

    Example:
        brain = Brain(provider="anthropic", model="claude-3-5-haiku-latest")
        response = await brain.think(system_prompt, messages)
    """

    def __init__(
        self,
        provider: str,
        model: str,
        temperature: float = 0.3,
        api_key: str | None = None,
    ):
        self.provider = provider
        self.model = self._resolve_model(provider, model)
        self.temperature = temperature
        self.api_key = api_key

    async def think(self, system_prompt: str, messages: list[dict], max_tokens: int | None = None) -> BrainResponse:
        full_messages = [{"role": "system", "content": system_prompt}] + messages

        response = await litellm.acompletion(
            model=self.model,
            messages=full_messages,
            temperature=self.temperature,
            max_tokens=max_tokens,
            api_key=self.api_key,
        )

        content = response.choices[0].message.content or ""
        return BrainResponse(
            content=content,
            model=response.model,
            usage=self._safe_usage(getattr(response, "usage", None)),
        )

    @staticmethod
    def _safe_usage(usage_obj) -> dict:
        """Keep only the integer token counters so the result can be stored in JSONB."""
        if usage_obj is None:
            return {}

        out: dict[str, int] = {}
        for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
            if isinstance(usage_obj, dict):
                val = usage_obj.get(key)
            else:
                val = getattr(usage_obj, key, None)
            if isinstance(val, int):
                out[key] = val
        return out

    @staticmethod
    def _resolve_model(provider: str, model: str) -> str:
        """LiteLLM uses prefixes for some providers. OpenAI models do not require a prefix."""
        prefix_map = {
            "anthropic": "anthropic/",
            "google": "gemini/",
            "openrouter": "openrouter/",
        }
        prefix = prefix_map.get(provider, "")
        if prefix and model.startswith(prefix):
            return model
        return f"{prefix}{model}"

    @classmethod
    def from_settings(cls, settings, api_key: str | None = None) -> "Brain":
        return cls(
            provider=settings.llm_provider,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            api_key=api_key,
        )
