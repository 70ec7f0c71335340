"""
Data Agent Agents Module

Stage agents of the question-to-answer pipeline.

Available Agents:
    - BaseAgent: Abstract base class for all agents
    - PlannerAgent: Turn classification, ambiguity detection, reference resolution
    - DecomposerAgent: Splits multi-part questions into dependent sub-queries
    - RetrieverAgent: Schema, join path, term and few-shot context (no LLM)
    - GeneratorAgent: Tenant-scoped SQL generation, fresh or edit mode
    - CorrectorAgent: Execution with self-correcting retries
    - PresenterAgent: Row-count contract, visualization and narrative (no LLM)

Usage:
    from data_agent.agents import PlannerAgent, GeneratorAgent

    planner = PlannerAgent()
    plan = await planner.plan("top 5 customers by spend", session, schema_map)
"""

from data_agent.agents.base import BaseAgent
from data_agent.agents.corrector import CorrectorAgent
from data_agent.agents.decomposer import DecomposerAgent
from data_agent.agents.generator import GeneratorAgent
from data_agent.agents.planner import PlannerAgent
from data_agent.agents.presenter import PresenterAgent
from data_agent.agents.retriever import RetrieverAgent

__all__ = [
    "BaseAgent",
    "CorrectorAgent",
    "DecomposerAgent",
    "GeneratorAgent",
    "PlannerAgent",
    "PresenterAgent",
    "RetrieverAgent",
]
