"""
LLM Provider Factory

Creates provider instances from LLMSettings, honouring per-agent provider
overrides and the main/mini model split.
"""

import logging
from typing import Literal

from data_agent.config import LLMSettings
from data_agent.llm.anthropic import AnthropicProvider
from data_agent.llm.base import BaseLLMProvider
from data_agent.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)

ModelTier = Literal["main", "mini"]


class LLMProviderFactory:
    """Factory for creating LLM provider instances."""

    PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    @staticmethod
    def create_provider(
        provider_type: str,
        config: LLMSettings,
        model_type: ModelTier = "main",
    ) -> BaseLLMProvider:
        """
        Create an LLM provider instance.

        Raises:
            ValueError: If provider type is unknown or its API key is missing
        """
        if provider_type not in LLMProviderFactory.PROVIDERS:
            raise ValueError(
                f"Unknown provider type: {provider_type}. "
                f"Available providers: {list(LLMProviderFactory.PROVIDERS.keys())}"
            )

        logger.info(
            f"Creating {provider_type} provider with {model_type} model",
            extra={"provider": provider_type, "model_type": model_type},
        )

        if provider_type == "openai":
            return LLMProviderFactory._create_openai(config, model_type)
        return LLMProviderFactory._create_anthropic(config, model_type)

    @staticmethod
    def create_agent_provider(
        agent_name: str,
        config: LLMSettings,
        model_type: ModelTier = "main",
    ) -> BaseLLMProvider:
        """
        Create provider for a specific agent.

        Looks for ``{agent_name}_provider`` on the settings (e.g. sql_provider)
        and falls back to default_provider.
        """
        override_attr = f"{agent_name}_provider"
        override = getattr(config, override_attr, None)
        provider_type = override or config.default_provider

        logger.info(
            f"Creating provider for {agent_name} agent",
            extra={
                "agent": agent_name,
                "provider": provider_type,
                "has_override": override is not None,
            },
        )

        return LLMProviderFactory.create_provider(provider_type, config, model_type)

    @staticmethod
    def _create_openai(config: LLMSettings, model_type: ModelTier) -> OpenAIProvider:
        if not config.openai_api_key:
            raise ValueError("OpenAI API key is required but not configured")

        model = config.openai_model if model_type == "main" else config.openai_model_mini

        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

    @staticmethod
    def _create_anthropic(config: LLMSettings, model_type: ModelTier) -> AnthropicProvider:
        if not config.anthropic_api_key:
            raise ValueError("Anthropic API key is required but not configured")

        model = config.anthropic_model if model_type == "main" else config.anthropic_model_mini

        return AnthropicProvider(
            api_key=config.anthropic_api_key,
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )
