"""
Schema Indexer

Writes one searchable document per user-facing table (plus a handful of
cross-domain "concept" documents) into the schema vector store, so the
retriever can find relevant tables by meaning rather than by name.

Indexing is idempotent per schema snapshot and is meant to run in the
background: failures are logged and never reach the question pipeline.
"""

import asyncio
import hashlib
import logging

from data_agent.knowledge.vectors import SchemaVectorStore
from data_agent.models.schema import SchemaMap, TableSchema

logger = logging.getLogger(__name__)

SCHEMA_SOURCE = "schema"
MAX_CHUNK_CHARS = 1500


def stable_id(namespace: str, name: str) -> str:
    return hashlib.sha256(f"{namespace}:{name}".encode()).hexdigest()[:32]


def build_table_document(table: TableSchema) -> str:
    """Rich text description of a table used for embedding."""
    parts = [
        f"Table: {table.name}",
        f"Domain: {table.domain}",
        f"Description: {table.description}",
        "",
        "Columns:",
    ]
    for column in table.columns:
        line = f"  - {column.name} ({column.type}"
        if not column.nullable:
            line += ", NOT NULL"
        if column.jsonb_keys:
            line += f", JSONB keys: {', '.join(column.jsonb_keys)}"
        parts.append(line + ")")

    if table.relationships:
        parts.extend(["", "Foreign Keys:"])
        for rel in table.relationships:
            parts.append(f"  - {rel.source_column} → {rel.target_table}.{rel.target_column}")

    return "\n".join(parts)


def build_cross_domain_concepts(schema_map: SchemaMap) -> list[str]:
    """Descriptions of how tables relate across domains, limited to tables that exist."""
    tables = schema_map.tables
    concepts: list[str] = []

    if "ecom_customers" in tables and "crm_contacts" in tables:
        concepts.append(
            "Unified customer view: ecom_customers JOIN customer_identity_links JOIN crm_contacts "
            "gives a 360-degree view of each customer across B2C ecommerce and B2B CRM. "
            "The customer_identity_links table maps ecom_customer_id to crm_contact_id."
        )

    if "customer_behavioral_profiles" in tables:
        concepts.append(
            "Customer lifecycle: customer_behavioral_profiles has lifecycle_stage "
            "(new, active, loyal, at_risk, lapsed, win_back, champion), engagement_score, "
            "RFM scores (recency_score, frequency_score, monetary_score), "
            "predicted_next_purchase, and product_affinities (JSONB array)."
        )

    if "email_campaigns" in tables and "email_customer_variants" in tables:
        concepts.append(
            "Campaign engagement: email_campaigns JOIN email_customer_variants shows which "
            "customers received which campaigns and their delivery_status "
            "(sent, delivered, opened, clicked, bounced)."
        )

    customers = tables.get("ecom_customers")
    address = customers.column("default_address") if customers else None
    if address and address.jsonb_keys:
        concepts.append(
            "Address data: ecom_customers.default_address is JSONB with keys "
            f"{{{', '.join(address.jsonb_keys)}}}. "
            "Access with default_address->>'zip', default_address->>'city', etc."
        )

    orders = tables.get("ecom_orders")
    if orders and orders.column("line_items"):
        concepts.append(
            "Product data in orders: ecom_orders.line_items is a JSONB array. "
            "Each item has {title, quantity, price, sku}. "
            "Use jsonb_array_elements(line_items) to unnest and query individual items."
        )

    if "segments" in tables and "segment_members" in tables:
        concepts.append(
            "Segment membership: segments JOIN segment_members JOIN ecom_customers "
            "shows which customers are in which segments. "
            "Segments have rules (JSONB) that define membership criteria."
        )

    if "crm_deals" in tables and "crm_deal_line_items" in tables:
        concepts.append(
            "Deal products: crm_deals JOIN crm_deal_line_items shows what products "
            "are included in each B2B deal, with quantities and prices."
        )

    return concepts


def split_into_chunks(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split on line boundaries so no chunk exceeds ``max_chars`` (single long lines excepted)."""
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for line in text.splitlines():
        if current and size + len(line) + 1 > max_chars:
            chunks.append("\n".join(current))
            current, size = [], 0
        current.append(line)
        size += len(line) + 1
    if current:
        chunks.append("\n".join(current))
    return chunks


class SchemaIndexer:
    """
    Keeps the schema vector store in step with tenant schema snapshots.

    Usage:
        indexer = SchemaIndexer(vector_store)
        indexer.schedule(org_id, schema_map)      # fire-and-forget
        await indexer.ensure_indexed(org_id, schema_map)
    """

    def __init__(self, vector_store: SchemaVectorStore):
        self.vector_store = vector_store
        self._indexed: dict[str, float] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_indexed(self, org_id: str, schema_map: SchemaMap) -> bool:
        return self._indexed.get(org_id) == schema_map.indexed_at

    async def ensure_indexed(self, org_id: str, schema_map: SchemaMap) -> int:
        """
        Index the snapshot unless it was already indexed.

        Returns:
            Number of chunks written (0 when already indexed)
        """
        if self.is_indexed(org_id, schema_map):
            return 0

        ids: list[str] = []
        documents: list[str] = []
        metadatas: list[dict] = []

        def add(source_id: str, text: str, kind: str, table: str = "") -> None:
            for index, chunk in enumerate(split_into_chunks(text)):
                ids.append(f"{org_id}:{source_id}:{index}")
                documents.append(chunk)
                metadatas.append(
                    {
                        "source": SCHEMA_SOURCE,
                        "source_id": source_id,
                        "chunk_index": index,
                        "org_id": org_id,
                        "kind": kind,
                        "table": table,
                    }
                )

        for table in schema_map.user_tables():
            add(
                stable_id("schema_table", table.name),
                build_table_document(table),
                "table",
                table.name,
            )

        for i, concept in enumerate(build_cross_domain_concepts(schema_map)):
            add(stable_id("schema_concept", f"concept_{i}"), concept, "concept")

        written = await self.vector_store.upsert_chunks(ids, documents, metadatas)
        self._indexed[org_id] = schema_map.indexed_at
        logger.info(
            f"Indexed schema for org {org_id}: {written} chunks",
            extra={"org_id": org_id, "chunks": written},
        )
        return written

    def schedule(self, org_id: str, schema_map: SchemaMap) -> asyncio.Task | None:
        """Start indexing in the background. Failures are logged, never raised."""
        if self.is_indexed(org_id, schema_map):
            return None
        task = asyncio.create_task(self._index_quietly(org_id, schema_map))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _index_quietly(self, org_id: str, schema_map: SchemaMap) -> None:
        try:
            await self.ensure_indexed(org_id, schema_map)
        except Exception as e:
            logger.warning(
                f"Schema indexing failed for org {org_id} (non-fatal): {e}", exc_info=True
            )
