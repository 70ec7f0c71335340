"""Schema introspection."""

from data_agent.schema.introspector import (
    SchemaIntrospector,
    classify_domain,
    describe_table,
    get_available_domains,
    get_schema_description,
    get_tables_for_domain,
)

__all__ = [
    "SchemaIntrospector",
    "classify_domain",
    "describe_table",
    "get_available_domains",
    "get_schema_description",
    "get_tables_for_domain",
]
