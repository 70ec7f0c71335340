"""Conversation sessions: storage, expiry and reference resolution."""

from data_agent.session.context import build_session_context, has_reference, resolve_reference
from data_agent.session.store import (
    InMemorySessionStore,
    SessionStore,
    SessionSweeper,
    get_or_create_session,
    update_session,
)

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SessionSweeper",
    "get_or_create_session",
    "update_session",
    "resolve_reference",
    "has_reference",
    "build_session_context",
]
