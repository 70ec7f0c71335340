"""
Unit tests for reference resolution and the session summary.
"""

import pytest

from data_agent.models.session import DataAgentSession, QueryTurn
from data_agent.session.context import build_session_context, has_reference, resolve_reference


def make_session(*turns: QueryTurn, **fields) -> DataAgentSession:
    return DataAgentSession(
        session_id="conv-1",
        org_id="org-acme",
        last_activity=0.0,
        queries=list(turns),
        **fields,
    )


CUSTOMERS_TURN = QueryTurn(
    question="customers in Texas",
    sql="SELECT id, city, zip FROM ecom_customers WHERE org_id = 'org-acme' LIMIT 100",
    tables=["ecom_customers"],
    domain="ecommerce",
    entity_ids=["c1", "c2"],
    result_values={"city": ["Austin", "Dallas"], "zip": ["78701", "75201"]},
    result_summary="Query: customers in Texas\nResults: 2 row(s)",
    timestamp=0.0,
)


class TestResolveReference:
    """Test pronoun-style reference resolution."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("their orders", True),
            ("orders for THEM", True),
            ("those zip codes", True),
            ("all orders", False),
        ],
    )
    def test_has_reference(self, text, expected):
        assert has_reference(text) is expected

    def test_named_value_bucket_wins(self):
        session = make_session(CUSTOMERS_TURN, active_entity_ids=["c1", "c2"])
        assert resolve_reference(session, "orders in those zip codes") == ["78701", "75201"]

    def test_falls_back_to_active_entities(self):
        session = make_session(CUSTOMERS_TURN, active_entity_ids=["c1", "c2"])
        assert resolve_reference(session, "their orders") == ["c1", "c2"]

    def test_no_history(self):
        session = make_session(active_entity_ids=["c1"])
        assert resolve_reference(session, "their orders") is None

    def test_text_without_reference(self):
        session = make_session(CUSTOMERS_TURN, active_entity_ids=["c1", "c2"])
        assert resolve_reference(session, "all orders") is None

    def test_nothing_to_resolve(self):
        turn = CUSTOMERS_TURN.model_copy(update={"result_values": {}})
        assert resolve_reference(make_session(turn), "their orders") is None


class TestSessionContext:
    """Test the summary handed to SQL generation."""

    def test_no_history(self):
        assert build_session_context(make_session()) is None

    def test_summary_lines(self):
        session = make_session(
            CUSTOMERS_TURN,
            current_domain="ecommerce",
            active_entity_ids=[f"c{i}" for i in range(7)],
        )

        context = build_session_context(session)

        lines = context.split("\n")
        assert lines[0] == "Session has 1 prior query turn(s)."
        assert lines[1] == "Current domain: ecommerce"
        assert lines[2] == "Active entity IDs (7): c0, c1, c2, c3, c4..."
        assert lines[3] == 'Turn 1: "customers in Texas" → ecom_customers (ecommerce)'
        assert lines[4] == "  Result: Query: customers in Texas"
        assert lines[-1] == "  Extractable values: city (2 values), zip (2 values)"

    def test_only_last_three_turns_described(self):
        turns = [
            CUSTOMERS_TURN.model_copy(update={"question": f"question {n}"}) for n in range(5)
        ]

        context = build_session_context(make_session(*turns))

        assert context.startswith("Session has 5 prior query turn(s).")
        assert 'Turn 3: "question 2"' in context
        assert 'Turn 5: "question 4"' in context
        assert "question 1" not in context
