"""
LLM Provider Module

Provider abstraction over OpenAI and Anthropic chat models.

Usage:
    from data_agent.llm import LLMProviderFactory, LLMRequest, LLMMessage
    from data_agent.config import get_settings

    config = get_settings()
    provider = LLMProviderFactory.create_agent_provider("sql", config.llm, model_type="mini")
    response = await provider.generate(
        LLMRequest(messages=[LLMMessage(role="user", content="Hello!")])
    )
"""

from data_agent.llm.anthropic import AnthropicProvider
from data_agent.llm.base import BaseLLMProvider, LLMRateLimitError
from data_agent.llm.factory import LLMProviderFactory
from data_agent.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from data_agent.llm.openai import OpenAIProvider

__all__ = [
    "BaseLLMProvider",
    "LLMRateLimitError",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LLMProviderFactory",
    "OpenAIProvider",
    "AnthropicProvider",
]
