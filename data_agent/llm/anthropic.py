"""
Anthropic LLM Provider

BaseLLMProvider implementation for Claude models.
"""

import logging

import anthropic
from anthropic import AsyncAnthropic

from data_agent.llm.base import BaseLLMProvider, LLMRateLimitError
from data_agent.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic (Claude) provider using the official async SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        temperature: float = 0.0,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="anthropic",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.client = AsyncAnthropic(api_key=api_key, timeout=float(timeout))

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate completion using the Anthropic Messages API."""
        request = self._apply_defaults(request)
        self._log_request(request)

        # Anthropic takes system prompts separately from the message list
        system_parts = [msg.content for msg in request.messages if msg.role == "system"]
        messages = [
            {"role": msg.role, "content": msg.content}
            for msg in request.messages
            if msg.role != "system"
        ]

        kwargs = {}
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            response = await self.client.messages.create(
                model=request.model or self.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                messages=messages,
                **kwargs,
            )
        except anthropic.RateLimitError as e:
            logger.warning(f"Anthropic rate limit: {e}")
            raise LLMRateLimitError("anthropic", str(e)) from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        llm_response = LLMResponse(
            content=text,
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            finish_reason=self._map_finish_reason(response.stop_reason),
            provider="anthropic",
            metadata={"id": response.id},
        )

        self._log_response(llm_response)
        return llm_response

    def count_tokens(self, text: str) -> int:
        # Rough approximation: ~4 characters per token
        return len(text) // 4

    def _map_finish_reason(self, reason: str | None) -> str:
        if reason == "max_tokens":
            return "length"
        return "stop"
