"""Fan-out of rendered frames and fan-in of client input for one application loop."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from typing import Any, Optional

from .adapter import SessionAdapter
from .errors import MultiplexerClosed
from .event_store import EventStore
from .registry import SessionRegistry
from .session import (
    END_OF_STREAM,
    EndOfStream,
    Frame,
    InputEvent,
    Permission,
    Session,
    SessionSummary,
    permission_from_any,
)

logger = logging.getLogger(__name__)


class Multiplexer:
    """Single source of truth for attached sessions.

    The application loop calls ``broadcast`` and ``next_input``; the acceptor
    calls ``register_first``/``register``; an admin UI calls ``list_sessions``,
    ``set_permission`` and ``disconnect``. Each registered session gets its own
    read-loop thread that feeds CONTROL input into one shared queue.
    """

    def __init__(self, *, event_store: EventStore | None = None) -> None:
        self.event_store = event_store or EventStore()
        self._registry = SessionRegistry()
        self._input: queue.Queue[InputEvent | EndOfStream] = queue.Queue()
        self._broadcast_lock = threading.Lock()
        self._closed = threading.Event()
        self._latest_frame: Frame | None = None
        self._readers: dict[int, threading.Thread] = {}
        self._readers_lock = threading.Lock()

    # ── registration ─────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def session_count(self) -> int:
        return len(self._registry)

    @property
    def latest_frame(self) -> Frame | None:
        return self._latest_frame

    def register(
        self,
        adapter: SessionAdapter,
        *,
        permission: Permission = Permission.CONTROL,
        identity: str = "",
    ) -> Session:
        adapter.set_permission(permission)
        session = self._registry.add(adapter, identity=identity, accept=self._accepting)
        if session is None:
            adapter.close(reason="MULTIPLEXER_CLOSED")
            raise MultiplexerClosed("multiplexer is shut down")
        self._activate(session)
        return session

    def register_first(self, adapter: SessionAdapter, *, identity: str = "") -> Session | None:
        """Register ``adapter`` as the first client if, and only if, no session is attached.

        The emptiness check and the insertion happen in one critical section,
        so two near-simultaneous connections cannot both skip authentication.
        """
        adapter.set_permission(Permission.CONTROL)
        session = self._registry.add(adapter, identity=identity, only_if_empty=True, accept=self._accepting)
        if session is None:
            if self.closed:
                adapter.close(reason="MULTIPLEXER_CLOSED")
                raise MultiplexerClosed("multiplexer is shut down")
            return None
        self._activate(session)
        return session

    def unregister(self, session_id: int, *, reason: str = "CLIENT_DISCONNECTED") -> bool:
        session = self._registry.remove(session_id)
        if session is None:
            return False
        session.adapter.close(reason=reason)
        logger.info("Session %s (%s) detached: %s", session.id, session.identity, reason)
        if reason == "BACKPRESSURE":
            self._audit(
                "SESSION_BACKPRESSURE_DROP",
                payload={"session_id": session.id, "identity": session.identity, "addr": session.address},
                reason=reason,
            )
        self._audit(
            "SESSION_CLIENT_DISCONNECTED",
            payload={"session_id": session.id, "identity": session.identity, "addr": session.address},
            reason=reason,
        )
        with self._readers_lock:
            self._readers.pop(session_id, None)
        return True

    def shutdown(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        # Wait out an in-flight broadcast so nothing is enqueued to a closing session.
        with self._broadcast_lock:
            sessions = self._registry.snapshot()
        for session in sessions:
            self.unregister(session.id, reason="SHUTDOWN")
        self._input.put(END_OF_STREAM)
        with self._readers_lock:
            readers = list(self._readers.values())
            self._readers.clear()
        current = threading.current_thread()
        for reader in readers:
            if reader is not current:
                reader.join(timeout=1.0)
        logger.info("Multiplexer shut down (%d sessions closed)", len(sessions))

    # ── application side ─────────────────────────────────────────

    def broadcast(self, frame: Frame) -> int:
        """Deliver ``frame`` to every registered session. Returns the number of sends attempted."""
        dead: list[Session] = []
        with self._broadcast_lock:
            self._latest_frame = frame
            sessions = self._registry.snapshot()
            for session in sessions:
                try:
                    ok = session.adapter.send(frame)
                except Exception:  # noqa: BLE001
                    logger.exception("Session %s encoder failed", session.id)
                    ok = False
                if not ok:
                    dead.append(session)
        for session in dead:
            self.unregister(session.id, reason=session.adapter.close_reason or "SEND_FAILED")
        return len(sessions)

    def next_input(self, timeout: Optional[float] = None) -> InputEvent | EndOfStream | None:
        """Next merged input event, None if nothing arrived within ``timeout``,
        or END_OF_STREAM once the multiplexer is shut down."""
        try:
            item = self._input.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is END_OF_STREAM:
            # Keep the sentinel available for any other consumer blocked on the queue.
            self._input.put(END_OF_STREAM)
        return item

    # ── admin interface ──────────────────────────────────────────

    def list_sessions(self) -> list[SessionSummary]:
        return self._registry.summaries()

    def set_permission(self, session_id: int, permission: Permission | str) -> bool:
        """Accepts a Permission or one of its names and labels, e.g. "RO" or "Read+Write"."""
        permission = permission_from_any(permission)
        previous = self._registry.set_permission(session_id, permission)
        if previous is None:
            return False
        if previous is not permission:
            logger.info("Session %s permission %s -> %s", session_id, previous.value, permission.value)
            self._audit(
                "SESSION_PERMISSION_CHANGED",
                payload={"session_id": session_id, "from": previous.value, "to": permission.value},
                reason="ADMIN",
            )
        return True

    def disconnect(self, session_id: int) -> bool:
        return self.unregister(session_id, reason="ADMIN_DISCONNECT")

    def get_session(self, session_id: int) -> Session | None:
        return self._registry.get(session_id)

    # ── internals ────────────────────────────────────────────────

    def _accepting(self) -> bool:
        return not self._closed.is_set()

    def _activate(self, session: Session) -> None:
        adapter = session.adapter
        adapter.start()
        logger.info(
            "Session %s (%s) attached as %s%s",
            session.id,
            session.identity,
            session.permission.value,
            " [first client]" if session.is_first_client else "",
        )
        self._audit(
            "SESSION_CLIENT_CONNECTED",
            payload={
                "session_id": session.id,
                "identity": session.identity,
                "addr": session.address,
                "permission": session.permission.value,
                "first_client": session.is_first_client,
            },
            reason="CONNECTED",
        )
        with self._broadcast_lock:
            if self._latest_frame is not None:
                adapter.send(self._latest_frame)
        reader = threading.Thread(
            target=self._read_loop,
            args=(session,),
            name=f"sharemux-reader-{session.id}",
            daemon=True,
        )
        with self._readers_lock:
            self._readers[session.id] = reader
        reader.start()

    def _read_loop(self, session: Session) -> None:
        adapter = session.adapter
        stamp = session.id
        while True:
            event = adapter.next_event()
            if isinstance(event, EndOfStream):
                break
            if event.kind == "noop":
                continue
            adapter.forward_if_permitted(dataclasses.replace(event, session_id=stamp), self._input.put)
        self.unregister(session.id, reason=adapter.close_reason or "CLIENT_DISCONNECTED")

    def _audit(self, event_type: str, *, payload: dict[str, Any], reason: str) -> None:
        self.event_store.append_new(event_type=event_type, payload=payload, reason=reason)
