"""
Schema Vector Store

Chroma-based store for schema descriptions with an async interface.
Search combines embedding similarity with keyword overlap ("hybrid"
search) so exact table and column names still rank well when the
embedding is vague.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings
from chromadb.utils.embedding_functions import OpenAIEmbeddingFunction

from data_agent.config import get_settings
from data_agent.models.context import SearchChunk

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9_]+")


class VectorStoreError(Exception):
    """Raised when vector store operations fail."""

    pass


def keyword_overlap(query: str, document: str) -> float:
    """Share of the query's words (longer than 2 characters) found in the document."""
    query_words = {w for w in _WORD.findall(query.lower()) if len(w) > 2}
    if not query_words:
        return 0.0
    document_words = set(_WORD.findall(document.lower()))
    return len(query_words & document_words) / len(query_words)


class SchemaVectorStore:
    """
    Vector store for schema chunks using Chroma.

    Usage:
        store = SchemaVectorStore()
        await store.initialize()

        await store.upsert_chunks(ids, documents, metadatas)
        chunks = await store.hybrid_search("customers by zip code", limit=8,
                                           source_filter=["schema"])
    """

    def __init__(
        self,
        collection_name: str | None = None,
        persist_directory: str | Path | None = None,
        embedding_model: str | None = None,
        openai_api_key: str | None = None,
        vector_weight: float = 0.6,
        text_weight: float = 0.4,
    ):
        """
        Initialize the vector store.

        Args:
            collection_name: Name of the Chroma collection (default from config)
            persist_directory: Directory for persistence (default from config)
            embedding_model: OpenAI embedding model (default from config)
            openai_api_key: OpenAI API key (default from config)
            vector_weight: Weight of embedding similarity in the hybrid score
            text_weight: Weight of keyword overlap in the hybrid score
        """
        # Only load config if needed (allows tests to avoid config validation)
        if (
            collection_name is None
            or persist_directory is None
            or embedding_model is None
            or openai_api_key is None
        ):
            config = get_settings()
            self.collection_name = collection_name or config.chroma.collection_name
            self.persist_directory = Path(persist_directory or config.chroma.persist_dir)
            self.embedding_model = embedding_model or config.chroma.embedding_model
            self.openai_api_key = openai_api_key or config.llm.openai_api_key
        else:
            self.collection_name = collection_name
            self.persist_directory = Path(persist_directory)
            self.embedding_model = embedding_model
            self.openai_api_key = openai_api_key

        self.vector_weight = vector_weight
        self.text_weight = text_weight

        self.client: chromadb.ClientAPI | None = None
        self.collection: chromadb.Collection | None = None

        logger.info(
            f"SchemaVectorStore initialized: collection={self.collection_name}, "
            f"persist_dir={self.persist_directory}, embedding_model={self.embedding_model}"
        )

    async def initialize(self) -> None:
        """
        Initialize the Chroma client and collection.

        Raises:
            VectorStoreError: If initialization fails
        """
        try:
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(self._init_client)
            logger.info("SchemaVectorStore initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize SchemaVectorStore: {e}")
            raise VectorStoreError(f"Initialization failed: {e}") from e

    def _init_client(self) -> None:
        """Initialize Chroma client (sync, called via to_thread)."""
        self.client = chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(anonymized_telemetry=False),
        )
        embedding_function = OpenAIEmbeddingFunction(
            api_key=self.openai_api_key,
            model_name=self.embedding_model,
        )
        self.collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=embedding_function,
        )

    def _require_collection(self):
        if not self.collection:
            raise VectorStoreError("SchemaVectorStore not initialized. Call initialize() first.")
        return self.collection

    async def upsert_chunks(
        self,
        ids: list[str],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> int:
        """
        Insert or replace chunks.

        Raises:
            VectorStoreError: If the upsert fails
        """
        collection = self._require_collection()
        if not ids:
            return 0
        try:
            await asyncio.to_thread(
                collection.upsert, ids=ids, documents=documents, metadatas=metadatas
            )
        except Exception as e:
            logger.error(f"Failed to upsert chunks: {e}")
            raise VectorStoreError(f"Failed to upsert chunks: {e}") from e

        logger.debug(f"Upserted {len(ids)} chunks")
        return len(ids)

    async def hybrid_search(
        self,
        query: str,
        limit: int = 8,
        source_filter: list[str] | None = None,
        org_id: str | None = None,
    ) -> list[SearchChunk]:
        """
        Rank chunks by a weighted mix of embedding similarity and keyword overlap.

        Args:
            query: Search text
            limit: Maximum chunks to return
            source_filter: Only consider chunks whose ``source`` metadata is listed
            org_id: Only consider chunks indexed for this tenant

        Returns:
            SearchChunks sorted by combined score, highest first

        Raises:
            VectorStoreError: If the underlying query fails
        """
        collection = self._require_collection()

        conditions: list[dict[str, Any]] = []
        if source_filter:
            conditions.append({"source": {"$in": list(source_filter)}})
        if org_id:
            conditions.append({"org_id": org_id})
        where: dict[str, Any] | None = None
        if len(conditions) == 1:
            where = conditions[0]
        elif conditions:
            where = {"$and": conditions}

        try:
            # Over-fetch so keyword overlap can re-rank
            results = await asyncio.to_thread(
                collection.query,
                query_texts=[query],
                n_results=limit * 2,
                where=where,
            )
        except Exception as e:
            logger.error(f"Schema search failed: {e}")
            raise VectorStoreError(f"Search failed: {e}") from e

        chunks: list[SearchChunk] = []
        ids = results["ids"][0] if results.get("ids") else []
        for i, chunk_id in enumerate(ids):
            document = results["documents"][0][i] if results.get("documents") else ""
            metadata = results["metadatas"][0][i] if results.get("metadatas") else {}
            distance = results["distances"][0][i] if results.get("distances") else 1.0
            similarity = max(0.0, 1.0 - float(distance))
            score = self.vector_weight * similarity + self.text_weight * keyword_overlap(
                query, document
            )
            chunks.append(
                SearchChunk(
                    source_id=str((metadata or {}).get("source_id", chunk_id)),
                    content=document or "",
                    score=score,
                    metadata=dict(metadata or {}),
                )
            )

        chunks.sort(key=lambda chunk: chunk.score, reverse=True)
        logger.debug(f"Hybrid search for '{query[:60]}' returned {len(chunks[:limit])} chunks")
        return chunks[:limit]

    async def get_count(self) -> int:
        collection = self._require_collection()
        try:
            return await asyncio.to_thread(collection.count)
        except Exception as e:
            logger.error(f"Failed to get count: {e}")
            raise VectorStoreError(f"Failed to get count: {e}") from e
