from tiller.providers.base import LLMProvider, LLMResponse, ToolCallRequest

__all__ = ["LLMProvider", "LLMResponse", "ToolCallRequest"]
