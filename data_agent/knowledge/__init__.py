"""
Knowledge Module

Schema search (Chroma), schema indexing, and verified query history.
"""

from data_agent.knowledge.history import HistoryEntry, QueryHistoryStore
from data_agent.knowledge.indexer import SchemaIndexer, build_table_document
from data_agent.knowledge.vectors import SchemaVectorStore, VectorStoreError, keyword_overlap

__all__ = [
    "SchemaVectorStore",
    "VectorStoreError",
    "keyword_overlap",
    "SchemaIndexer",
    "build_table_document",
    "QueryHistoryStore",
    "HistoryEntry",
]
