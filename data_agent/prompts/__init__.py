"""Prompt templates for the LLM-backed agents."""

from data_agent.prompts.loader import PromptLoader, get_prompt_loader

__all__ = ["PromptLoader", "get_prompt_loader"]
