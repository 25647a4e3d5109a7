"""Session registry enforcing one active agent session per conversation."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from ..cancellation import CancellationToken

__all__ = ["Session", "SessionRegistry"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Session:
    conversation_id: str
    token: CancellationToken
    started_at: float = field(default_factory=time.time)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class SessionRegistry:
    """Guarded map from conversation id to the active session.

    ``register`` cancels any prior session for the same id before returning,
    so a new request always wins immediately. All access goes through the
    methods below; the lock makes them safe to call from other threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def register(self, conversation_id: str) -> Session:
        session = Session(conversation_id, CancellationToken(f"session:{conversation_id}"))
        with self._lock:
            prior = self._sessions.get(conversation_id)
            self._sessions[conversation_id] = session
        if prior is not None:
            prior.token.cancel("superseded")
            LOGGER.info("Superseded active session for conversation %s", conversation_id)
        return session

    def cancel(self, conversation_id: str) -> bool:
        """Cancel the active session; returns whether one was found."""

        with self._lock:
            session = self._sessions.pop(conversation_id, None)
        if session is None:
            return False
        session.token.cancel("cancelled")
        LOGGER.info("Cancelled session for conversation %s", conversation_id)
        return True

    def unregister(self, conversation_id: str, session: Session | None = None) -> bool:
        """Remove the entry for ``conversation_id``.

        When ``session`` is given, the entry is only removed if it still
        belongs to that session, so a superseded session cannot evict its
        successor.
        """

        with self._lock:
            current = self._sessions.get(conversation_id)
            if current is None or (session is not None and current is not session):
                return False
            del self._sessions[conversation_id]
        return True

    def get(self, conversation_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(conversation_id)

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def cancel_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.token.cancel("shutdown")
        return len(sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
