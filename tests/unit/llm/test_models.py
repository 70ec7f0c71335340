"""
Tests for LLM request/response models.
"""

import pytest
from pydantic import ValidationError

from data_agent.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage


def user_message(content: str = "Test") -> LLMMessage:
    return LLMMessage(role="user", content=content)


class TestLLMMessage:
    """Test LLMMessage model."""

    @pytest.mark.parametrize("role", ["system", "user", "assistant"])
    def test_valid_roles(self, role):
        assert LLMMessage(role=role, content="Test").role == role

    def test_invalid_role(self):
        with pytest.raises(ValidationError):
            LLMMessage(role="tool", content="Test")

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            LLMMessage(role="user", content="")


class TestLLMRequest:
    """Test LLMRequest model."""

    def test_optional_fields(self):
        request = LLMRequest(messages=[user_message()])
        assert request.temperature is None
        assert request.max_tokens is None
        assert request.model is None
        assert request.metadata == {}

    def test_empty_messages_rejected(self):
        with pytest.raises(ValidationError):
            LLMRequest(messages=[])

    @pytest.mark.parametrize("temperature", [-0.1, 2.1])
    def test_temperature_bounds(self, temperature):
        with pytest.raises(ValidationError):
            LLMRequest(messages=[user_message()], temperature=temperature)

    @pytest.mark.parametrize("max_tokens", [0, -1])
    def test_max_tokens_positive(self, max_tokens):
        with pytest.raises(ValidationError):
            LLMRequest(messages=[user_message()], max_tokens=max_tokens)


class TestLLMResponse:
    """Test LLMResponse and LLMUsage."""

    def test_valid_response(self):
        response = LLMResponse(
            content="SELECT 1",
            model="gpt-4o",
            usage=LLMUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            finish_reason="stop",
            provider="openai",
        )
        assert response.usage.total_tokens == 15
        assert response.metadata == {}

    def test_invalid_finish_reason(self):
        with pytest.raises(ValidationError):
            LLMResponse(
                content="Test",
                model="test",
                usage=LLMUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2),
                finish_reason="tool_calls",
                provider="test",
            )

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValidationError):
            LLMUsage(prompt_tokens=-1, completion_tokens=0, total_tokens=0)
