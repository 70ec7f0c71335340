"""
Session Store

Conversation state keyed by ``"{org_id}:{session_id}"``. Sessions are
created lazily on the first question, touched on every access, and
expire after a period of inactivity. Nothing reads an expired session:
``get`` drops it on sight, and a background sweeper purges the rest.

Stores are injected (never module-level singletons) and take a Clock so
expiry can be tested without sleeping.

Usage:
    store = InMemorySessionStore(ttl_seconds=1800)
    session = get_or_create_session(store, "conv-1", "org-1")
    ...
    update_session(store, session, turn)
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from data_agent.models.session import DataAgentSession, QueryTurn, session_key
from data_agent.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 30 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60
DEFAULT_MAX_QUERY_HISTORY = 20


class SessionStore(ABC):
    """Keyed storage for DataAgentSession objects with inactivity expiry."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        max_history: int = DEFAULT_MAX_QUERY_HISTORY,
        clock: Clock | None = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_history = max_history
        self.clock = clock or SystemClock()

    def is_expired(self, session: DataAgentSession) -> bool:
        return self.clock.now() - session.last_activity >= self.ttl_seconds

    @abstractmethod
    def get(self, key: str) -> DataAgentSession | None:
        """Return the live session for ``key``, or None if missing or expired."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def put(self, session: DataAgentSession) -> None:
        """Store (or replace) a session under its key."""
        pass  # pragma: no cover - abstract method

    @abstractmethod
    def sweep(self) -> int:
        """Remove every expired session. Returns the number removed."""
        pass  # pragma: no cover - abstract method


class InMemorySessionStore(SessionStore):
    """Process-local store. Each key is only mutated by the request serving it."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        max_history: int = DEFAULT_MAX_QUERY_HISTORY,
        clock: Clock | None = None,
    ):
        super().__init__(ttl_seconds=ttl_seconds, max_history=max_history, clock=clock)
        self._sessions: dict[str, DataAgentSession] = {}

    def get(self, key: str) -> DataAgentSession | None:
        session = self._sessions.get(key)
        if session is None:
            return None
        if self.is_expired(session):
            del self._sessions[key]
            return None
        return session

    def put(self, session: DataAgentSession) -> None:
        self._sessions[session.key] = session

    def sweep(self) -> int:
        expired = [key for key, session in self._sessions.items() if self.is_expired(session)]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


def get_or_create_session(store: SessionStore, session_id: str, org_id: str) -> DataAgentSession:
    """Return the live session for (org, conversation), creating it when needed."""
    now = store.clock.now()
    session = store.get(session_key(org_id, session_id))
    if session is not None:
        session.last_activity = now
        return session

    session = DataAgentSession(session_id=session_id, org_id=org_id, last_activity=now)
    store.put(session)
    logger.debug(f"Created session {session.key}")
    return session


def update_session(store: SessionStore, session: DataAgentSession, turn: QueryTurn) -> None:
    """
    Record a completed turn.

    History is capped at ``store.max_history`` (oldest evicted). The turn's
    domain and entity ids become the session's active context, and its
    first table becomes the active entity type.
    """
    session.queries = [*session.queries, turn][-store.max_history :]
    session.current_domain = turn.domain
    session.active_entity_ids = list(turn.entity_ids)
    if turn.tables:
        session.active_entity_type = turn.tables[0]
    session.last_activity = store.clock.now()
    store.put(session)


class SessionSweeper:
    """
    Background task that periodically purges expired sessions.

    Usage:
        sweeper = SessionSweeper(store, interval_seconds=300)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self, store: SessionStore, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.store.sweep()
            except Exception as e:
                logger.warning(f"Session sweep failed: {e}", exc_info=True)
