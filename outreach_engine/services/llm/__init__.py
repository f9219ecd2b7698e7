"""LLM providers. Services go through ``ai_service``, never a provider directly."""

from outreach_engine.services.llm.base import ChatMessage, LLMProvider, LLMResponse
from outreach_engine.services.llm.openai_provider import OpenAIProvider, OpenAIProviderError

__all__ = ["ChatMessage", "LLMProvider", "LLMResponse", "OpenAIProvider", "OpenAIProviderError"]
