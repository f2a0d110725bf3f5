from kfbot.services.llm.base import LLMProvider, LLMResponse
from kfbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
