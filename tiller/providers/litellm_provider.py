"""LiteLLM provider implementation for multi-provider support."""

from __future__ import annotations

import json
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from tiller.providers.base import LLMProvider, LLMResponse, ToolCallRequest


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM.

    Supports Anthropic, OpenAI, OpenRouter, Gemini, self-hosted OpenAI
    compatible servers and the rest of LiteLLM's catalog through one
    interface.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5",
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        self.is_openrouter = bool(
            (api_key and api_key.startswith("sk-or-")) or (api_base and "openrouter" in api_base)
        )
        # Any other custom endpoint is treated as a hosted OpenAI-compatible server.
        self.is_hosted = bool(api_base) and not self.is_openrouter

        litellm.suppress_debug_info = True

    def _resolve_model(self, model: str | None) -> str:
        """Resolve model name with provider-specific prefixes."""
        model = model or self.default_model

        if self.is_openrouter and not model.startswith("openrouter/"):
            return f"openrouter/{model}"
        if self.is_hosted and not model.startswith("hosted_vllm/"):
            return f"hosted_vllm/{model}"
        if "gemini" in model.lower() and "/" not in model:
            return f"gemini/{model}"
        return model

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(model),
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Send a chat completion request via LiteLLM."""
        kwargs = self._build_kwargs(messages, tools, model, max_tokens, temperature)

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"LiteLLM call failed for {kwargs['model']}: {e}")
            return LLMResponse(content=f"Error calling LLM: {e}", finish_reason="error")
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse a LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            args = tc.function.arguments
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args else {}
                except json.JSONDecodeError:
                    args = {"raw": args}
            tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=args))

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            thinking=getattr(message, "reasoning_content", None),
        )

    def get_default_model(self) -> str:
        return self.default_model
