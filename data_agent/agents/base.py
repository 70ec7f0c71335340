"""
Base Agent Framework

Abstract base class for every stage agent in the data agent pipeline.
Provides a consistent interface, timing, logging, and retry handling.

Usage:
    class MyAgent(BaseAgent):
        def __init__(self):
            super().__init__(name="MyAgent")

        async def execute(self, input: AgentInput) -> AgentOutput:
            return AgentOutput(success=True, metadata=self._create_metadata())
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from data_agent.llm.base import BaseLLMProvider, LLMRateLimitError
from data_agent.llm.models import LLMMessage, LLMRequest
from data_agent.models.agent import AgentError, AgentInput, AgentMetadata, AgentOutput

logger = logging.getLogger(__name__)


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Extract the outermost JSON object from an LLM response.

    Models sometimes wrap JSON in prose or code fences; everything outside
    the first ``{`` and the last ``}`` is ignored.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    stripped = text.strip()
    start = stripped.find("{")
    end = stripped.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError("No JSON object found in response")
    try:
        data = json.loads(stripped[start:end])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class BaseAgent(ABC):
    """
    Abstract base class for all pipeline agents.

    Attributes:
        name: Unique identifier for this agent
        max_retries: Maximum number of retry attempts on recoverable errors
        rate_limit_retries: Backoff retries for a single rate-limited LLM request
        timeout_seconds: Maximum execution time before timeout

    The __call__ method wraps execute() with timing, logging, metadata
    collection and exponential-backoff retries for recoverable AgentErrors.
    Unexpected exceptions are wrapped in a non-recoverable AgentError.
    """

    def __init__(
        self,
        name: str,
        max_retries: int = 1,
        timeout_seconds: float | None = None,
        rate_limit_retries: int = 3,
    ):
        self.name = name
        self.max_retries = max_retries
        self.rate_limit_retries = rate_limit_retries
        self.timeout_seconds = timeout_seconds
        self._metadata = self._create_metadata()

        logger.debug(
            f"Initialized {self.name}",
            extra={
                "agent": self.name,
                "max_retries": max_retries,
                "timeout_seconds": timeout_seconds,
            },
        )

    @abstractmethod
    async def execute(self, input: AgentInput) -> AgentOutput:
        """
        Execute the agent's core logic.

        Raises:
            AgentError: On execution failures (recoverable or not)
        """
        pass  # pragma: no cover - abstract method

    async def __call__(self, input: AgentInput) -> AgentOutput:
        """
        Execute the agent with timing, logging, and error handling.

        Raises:
            AgentError: If all retry attempts fail or the error is not recoverable
        """
        start_time = time.perf_counter()
        attempt = 0

        logger.info(
            f"Starting {self.name}",
            extra={
                "agent": self.name,
                "query": input.query[:100],
                "org_id": input.org_id,
                "context_keys": list(input.context.keys()),
            },
        )

        while True:
            try:
                self._metadata = self._create_metadata()

                if self.timeout_seconds:
                    output = await asyncio.wait_for(self.execute(input), self.timeout_seconds)
                else:
                    output = await self.execute(input)

                duration_ms = (time.perf_counter() - start_time) * 1000
                self._metadata.mark_complete()
                self._metadata.duration_ms = duration_ms
                output.metadata = self._metadata

                logger.info(
                    f"Completed {self.name}",
                    extra={
                        "agent": self.name,
                        "success": output.success,
                        "duration_ms": duration_ms,
                        "attempt": attempt + 1,
                        "llm_calls": self._metadata.llm_calls,
                    },
                )
                return output

            except AgentError as e:
                attempt += 1
                logger.warning(
                    f"Agent error in {self.name}: {e.message}",
                    extra={
                        "agent": self.name,
                        "recoverable": e.recoverable,
                        "attempt": attempt,
                        "max_retries": self.max_retries,
                        "context": e.context,
                    },
                )

                if not e.recoverable or attempt > self.max_retries:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    self._metadata.mark_complete()
                    self._metadata.duration_ms = duration_ms
                    self._metadata.error = str(e)
                    logger.error(
                        f"Failed {self.name} after {attempt} attempts",
                        extra={"agent": self.name, "error": str(e), "attempts": attempt},
                    )
                    raise

                wait_time = 2 ** (attempt - 1)
                logger.info(
                    f"Retrying {self.name} in {wait_time}s",
                    extra={"agent": self.name, "wait_time": wait_time},
                )
                await self._sleep(wait_time)

            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                self._metadata.mark_complete()
                self._metadata.duration_ms = duration_ms
                self._metadata.error = str(e)

                logger.error(
                    f"Unexpected error in {self.name}",
                    extra={
                        "agent": self.name,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "duration_ms": duration_ms,
                    },
                    exc_info=True,
                )
                raise AgentError(
                    agent=self.name,
                    message=f"Unexpected error: {e}",
                    recoverable=False,
                    context={"error_type": type(e).__name__},
                ) from e

    def _create_metadata(self) -> AgentMetadata:
        return AgentMetadata(agent_name=self.name)

    def _track_llm_call(self, tokens: int | None = None) -> None:
        """Record one LLM request (and its token usage) in the execution metadata."""
        self._metadata.llm_calls += 1
        if tokens:
            self._metadata.tokens_used = (self._metadata.tokens_used or 0) + tokens

    async def _complete(
        self,
        llm: BaseLLMProvider,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Send a system+user prompt pair and return the response text.

        A rate-limited request is retried up to ``rate_limit_retries`` times
        with exponential backoff (1s, 2s, 4s, ...).

        Raises:
            LLMRateLimitError: If the provider is still throttling after the last retry
        """
        request = LLMRequest(
            messages=[
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=user_prompt),
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        attempt = 0
        while True:
            try:
                response = await llm.generate(request)
                break
            except LLMRateLimitError:
                attempt += 1
                if attempt > self.rate_limit_retries:
                    raise
                wait_time = 2 ** (attempt - 1)
                logger.warning(
                    f"{self.name} rate limited, retrying in {wait_time}s",
                    extra={"agent": self.name, "attempt": attempt, "wait_time": wait_time},
                )
                await self._sleep(wait_time)
        self._track_llm_call(response.usage.total_tokens)
        return response.content

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
