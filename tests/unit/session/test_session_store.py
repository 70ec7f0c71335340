"""Unit tests for session storage, expiry and the background sweeper."""

from __future__ import annotations

import asyncio

import pytest

from data_agent.models.session import QueryTurn, session_key
from data_agent.session.store import (
    InMemorySessionStore,
    SessionSweeper,
    get_or_create_session,
    update_session,
)


def make_turn(question: str, timestamp: float, **fields) -> QueryTurn:
    return QueryTurn(question=question, sql="SELECT 1", timestamp=timestamp, **fields)


@pytest.fixture
def store(manual_clock) -> InMemorySessionStore:
    return InMemorySessionStore(ttl_seconds=60, max_history=3, clock=manual_clock)


def test_session_created_lazily_and_reused(store, manual_clock) -> None:
    """The same (org, conversation) pair always maps to one live session."""
    first = get_or_create_session(store, "conv-1", "org-acme")
    manual_clock.advance(30)
    second = get_or_create_session(store, "conv-1", "org-acme")

    assert first is second
    assert second.key == "org-acme:conv-1"
    assert second.last_activity == manual_clock.now()
    assert len(store) == 1


def test_sessions_are_scoped_by_tenant(store) -> None:
    """Two tenants using the same conversation id never share state."""
    acme = get_or_create_session(store, "conv-1", "org-acme")
    globex = get_or_create_session(store, "conv-1", "org-globex")

    assert acme is not globex
    assert store.get(session_key("org-globex", "conv-1")) is globex


def test_expired_session_is_never_returned(store, manual_clock) -> None:
    """A session idle for the TTL is gone on the next read."""
    session = get_or_create_session(store, "conv-1", "org-acme")
    update_session(store, session, make_turn("customers", manual_clock.now(), entity_ids=["c1"]))

    manual_clock.advance(60)

    assert store.get(session.key) is None
    fresh = get_or_create_session(store, "conv-1", "org-acme")
    assert fresh is not session
    assert fresh.queries == []
    assert fresh.active_entity_ids == []


def test_access_keeps_session_alive(store, manual_clock) -> None:
    session = get_or_create_session(store, "conv-1", "org-acme")
    for _ in range(3):
        manual_clock.advance(45)
        assert get_or_create_session(store, "conv-1", "org-acme") is session


def test_update_session_sets_active_context(store, manual_clock) -> None:
    """The latest turn drives the session's domain and entity context."""
    session = get_or_create_session(store, "conv-1", "org-acme")
    manual_clock.advance(5)

    update_session(
        store,
        session,
        make_turn(
            "top customers",
            manual_clock.now(),
            tables=["ecom_customers", "ecom_orders"],
            domain="ecommerce",
            entity_ids=["c1", "c2"],
        ),
    )

    assert session.current_domain == "ecommerce"
    assert session.active_entity_type == "ecom_customers"
    assert session.active_entity_ids == ["c1", "c2"]
    assert session.last_activity == manual_clock.now()
    assert session.last_turn.question == "top customers"


def test_turn_without_tables_keeps_entity_type(store, manual_clock) -> None:
    session = get_or_create_session(store, "conv-1", "org-acme")
    update_session(
        store, session, make_turn("deals", manual_clock.now(), tables=["crm_deals"])
    )
    update_session(store, session, make_turn("how many", manual_clock.now()))

    assert session.active_entity_type == "crm_deals"
    assert session.active_entity_ids == []


def test_history_is_capped_oldest_first(store, manual_clock) -> None:
    session = get_or_create_session(store, "conv-1", "org-acme")
    for number in range(5):
        update_session(store, session, make_turn(f"question {number}", manual_clock.now()))

    assert [turn.question for turn in session.queries] == [
        "question 2",
        "question 3",
        "question 4",
    ]


def test_sweep_removes_only_expired(store, manual_clock) -> None:
    get_or_create_session(store, "conv-old", "org-acme")
    manual_clock.advance(40)
    get_or_create_session(store, "conv-new", "org-acme")
    manual_clock.advance(25)

    assert store.sweep() == 1
    assert len(store) == 1
    assert store.get(session_key("org-acme", "conv-new")) is not None


@pytest.mark.asyncio
async def test_sweeper_runs_periodically(store, manual_clock) -> None:
    """The sweeper purges expired sessions without any request touching them."""
    get_or_create_session(store, "conv-1", "org-acme")
    manual_clock.advance(120)

    sweeper = SessionSweeper(store, interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running
    for _ in range(50):
        if len(store) == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(store) == 0
    assert not sweeper.running


@pytest.mark.asyncio
async def test_sweeper_stop_without_start(store) -> None:
    sweeper = SessionSweeper(store)
    await sweeper.stop()
    assert not sweeper.running
