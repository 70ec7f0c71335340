"""Tests for the verified query history store."""

from __future__ import annotations

import pytest

from data_agent.knowledge.history import (
    INSERT_QUERY,
    RECENT_VERIFIED_QUERY,
    HistoryEntry,
    QueryHistoryStore,
)


@pytest.fixture
def entry() -> HistoryEntry:
    return HistoryEntry(
        org_id="org-acme",
        session_id="conv-1",
        question="top 5 customers by spend",
        sql="SELECT first_name FROM ecom_customers WHERE org_id = 'org-acme' LIMIT 5",
        tables_used=["ecom_customers"],
        domain="ecommerce",
        execution_time_ms=12.7,
        row_count=5,
    )


@pytest.mark.asyncio
async def test_record_writes_verified_row(mock_postgres_connector, entry) -> None:
    store = QueryHistoryStore(mock_postgres_connector)

    await store.record(entry)

    query, params = mock_postgres_connector.execute_write.await_args.args
    assert query == INSERT_QUERY
    assert "verified" in query
    assert params == [
        "org-acme",
        "conv-1",
        "top 5 customers by spend",
        entry.sql,
        ["ecom_customers"],
        "ecommerce",
        12,
        5,
    ]


@pytest.mark.asyncio
async def test_background_write_failure_is_not_raised(mock_postgres_connector, entry) -> None:
    """A failed history write never affects the answer."""
    mock_postgres_connector.execute_write.side_effect = RuntimeError("relation does not exist")
    store = QueryHistoryStore(mock_postgres_connector)

    task = store.record_in_background(entry)
    await task

    assert task.exception() is None
    assert mock_postgres_connector.execute_write.await_count == 1


@pytest.mark.asyncio
async def test_recent_verified_reads_tenant_rows(mock_postgres_connector, execution_result) -> None:
    mock_postgres_connector.execute.return_value = execution_result(
        [
            {"question": "revenue by month", "sql": "SELECT 1", "tables_used": ["ecom_orders"]},
            {"question": "open deals", "sql": "SELECT 2", "tables_used": None},
        ]
    )
    store = QueryHistoryStore(mock_postgres_connector)

    history = await store.recent_verified("org-acme", limit=20)

    mock_postgres_connector.execute.assert_awaited_once_with(
        RECENT_VERIFIED_QUERY, ["org-acme", 20]
    )
    assert [h.question for h in history] == ["revenue by month", "open deals"]
    assert history[0].tables_used == ["ecom_orders"]
    assert history[1].tables_used == []
    assert all(h.org_id == "org-acme" for h in history)
