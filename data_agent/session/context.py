"""
Session Context

Reference resolution ("their orders", "those zip codes") and the compact
session summary handed to SQL generation.
"""

from typing import Any

from data_agent.models.session import DataAgentSession

REFERENCE_WORDS = ("their", "them", "those", "these", "same")


def has_reference(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in REFERENCE_WORDS)


def resolve_reference(session: DataAgentSession, reference: str) -> list[Any] | None:
    """
    Resolve a pronoun-style reference against the most recent turn.

    A result-value bucket named in the text ("those zip codes" -> ``zip``)
    wins over the active entity ids. Returns None when the text holds no
    reference or nothing can be resolved.
    """
    last_turn = session.last_turn
    if last_turn is None or not has_reference(reference):
        return None

    lowered = reference.lower()
    for key, values in last_turn.result_values.items():
        if key.lower() in lowered and values:
            return list(values)

    if session.active_entity_ids:
        return list(session.active_entity_ids)

    return None


def build_session_context(session: DataAgentSession) -> str | None:
    """Summarise the session for the generator prompt. None when there is no history."""
    if not session.queries:
        return None

    total = len(session.queries)
    parts = [f"Session has {total} prior query turn(s)."]

    if session.current_domain:
        parts.append(f"Current domain: {session.current_domain}")

    ids = session.active_entity_ids
    if ids:
        more = "..." if len(ids) > 5 else ""
        parts.append(f"Active entity IDs ({len(ids)}): {', '.join(ids[:5])}{more}")

    recent = session.queries[-3:]
    for offset, turn in enumerate(recent):
        number = total - len(recent) + offset + 1
        tables = ", ".join(turn.tables)
        parts.append(f'Turn {number}: "{turn.question}" → {tables} ({turn.domain})')
        if turn.result_summary:
            parts.append(f"  Result: {turn.result_summary}")
        buckets = [
            f"{key} ({len(values)} values)" for key, values in turn.result_values.items() if values
        ]
        if buckets:
            parts.append(f"  Extractable values: {', '.join(buckets)}")

    return "\n".join(parts)
