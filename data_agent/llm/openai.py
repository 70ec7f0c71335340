"""
OpenAI LLM Provider

BaseLLMProvider implementation for OpenAI chat models (gpt-4o, gpt-4o-mini).
"""

import logging

import openai
import tiktoken
from openai import AsyncOpenAI

from data_agent.llm.base import BaseLLMProvider, LLMRateLimitError
from data_agent.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI provider using the official async SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.0,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="openai",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.client = AsyncOpenAI(api_key=api_key, timeout=float(timeout))

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate completion using OpenAI API.

        Raises:
            LLMRateLimitError: On HTTP 429
            openai.APIError: On other API errors
        """
        request = self._apply_defaults(request)
        self._log_request(request)

        messages = [{"role": msg.role, "content": msg.content} for msg in request.messages]

        try:
            response = await self.client.chat.completions.create(
                model=request.model or self.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                **request.metadata,
            )
        except openai.RateLimitError as e:
            logger.warning(f"OpenAI rate limit: {e}")
            raise LLMRateLimitError("openai", str(e)) from e
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI API timeout: {e}")
            raise
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise

        usage = response.usage
        llm_response = LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            finish_reason=self._map_finish_reason(response.choices[0].finish_reason),
            provider="openai",
            metadata={"id": response.id, "created": response.created},
        )

        self._log_response(llm_response)
        return llm_response

    def count_tokens(self, text: str) -> int:
        """Count tokens using tiktoken, falling back to cl100k_base for unknown models."""
        try:
            encoding = tiktoken.encoding_for_model(self.model)
        except KeyError:
            encoding = tiktoken.get_encoding("cl100k_base")
        return len(encoding.encode(text))

    def _map_finish_reason(self, reason: str | None) -> str:
        if reason in ("stop", "length", "content_filter"):
            return reason
        return "stop"
