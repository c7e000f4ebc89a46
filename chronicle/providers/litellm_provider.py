"""LiteLLM provider: the one place chronicle talks to a model API."""

import os
from typing import Any

# Use the bundled model cost map instead of fetching it at import time.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import litellm
from litellm import acompletion
from loguru import logger

from chronicle.providers.base import LLMProvider, LLMResponse
from chronicle.utils.exceptions import sanitize_error_message

_MAX_DETAIL_LEN = 1200


def _classify_error_kind(exc: Exception) -> tuple[str, bool]:
    msg = str(exc).lower()
    if any(x in msg for x in ("rate limit", "too many requests", "429")):
        return "rate_limit", True
    if any(x in msg for x in ("insufficient", "credit", "billing", "quota exceeded")):
        return "billing", False
    if any(x in msg for x in ("unauthorized", "invalid api key", "authentication", "401", "403")):
        return "auth", False
    if any(x in msg for x in ("timeout", "timed out", "deadline exceeded")):
        return "timeout", True
    return "unknown", True


def _user_friendly_llm_error(exc: Exception, model: str) -> str:
    """Short first line for the user, truncated detail after it."""
    err_str = sanitize_error_message(str(exc))
    first_line = err_str.split("\n")[0].strip() or type(exc).__name__
    detail = err_str if len(err_str) <= _MAX_DETAIL_LEN else err_str[:_MAX_DETAIL_LEN] + "\n... (truncated)"
    return f"Error calling LLM ({model}): {first_line}\n\nDetail: {detail}"


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM, so any ``provider/model`` id LiteLLM knows
    (``anthropic/...``, ``openai/...``, ``ollama/...``) works. API keys come
    from the usual provider environment variables unless passed explicitly.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-20250514",
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        litellm.suppress_debug_info = True
        litellm.drop_params = True

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        model = model or self.default_model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [dict(m, content=m.get("content") or "") for m in messages],
            # LiteLLM rejects max_tokens < 1
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            kind, retryable = _classify_error_kind(e)
            logger.error(f"LLM call failed ({kind}): {sanitize_error_message(str(e))}")
            return LLMResponse(
                content=_user_friendly_llm_error(e, model),
                finish_reason="error",
                error_kind=kind,
                retryable=retryable,
            )
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )
