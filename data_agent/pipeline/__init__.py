"""
Pipeline package for the data agent.

Contains the LangGraph orchestrator that connects all agents into a complete
pipeline, and the stitcher that merges multi-query results.
"""

from data_agent.pipeline.orchestrator import DataAgentPipeline, create_pipeline
from data_agent.pipeline.stitcher import SubQueryResult, stitch

__all__ = ["DataAgentPipeline", "SubQueryResult", "create_pipeline", "stitch"]
