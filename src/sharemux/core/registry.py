"""Thread-safe collection of attached sessions."""

from __future__ import annotations

import itertools
import threading
import time
from typing import Callable, Optional

from .adapter import SessionAdapter
from .session import Permission, Session, SessionSummary


class SessionRegistry:
    """Insertion-ordered id -> Session map behind a single lock.

    Every operation (add, remove, list, permission change) is one critical
    section; callers never iterate the live mapping.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def add(
        self,
        adapter: SessionAdapter,
        *,
        identity: str = "",
        only_if_empty: bool = False,
        accept: Optional[Callable[[], bool]] = None,
    ) -> Session | None:
        """Create and insert a session for ``adapter``.

        Returns None when ``only_if_empty`` is set and the registry is not
        empty, or when ``accept`` (evaluated inside the lock) returns False.
        """
        with self._lock:
            if accept is not None and not accept():
                return None
            if only_if_empty and self._sessions:
                return None
            session_id = next(self._ids)
            adapter.session_id = session_id
            session = Session(
                id=session_id,
                adapter=adapter,
                identity=identity or f"client-{session_id}@{adapter.peer}",
                address=adapter.peer,
                is_first_client=only_if_empty,
                connected_at=time.time(),
            )
            self._sessions[session_id] = session
            return session

    def remove(self, session_id: int) -> Session | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def get(self, session_id: int) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def snapshot(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def set_permission(self, session_id: int, permission: Permission) -> Permission | None:
        """Return the previous permission, or None if the session is gone."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            return session.adapter.set_permission(permission)

    def summaries(self, now: float | None = None) -> list[SessionSummary]:
        now_ts = time.time() if now is None else now
        with self._lock:
            return [session.summary(now_ts) for session in self._sessions.values()]
