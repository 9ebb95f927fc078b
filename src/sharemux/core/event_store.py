"""In-memory audit trail of session lifecycle events."""

from __future__ import annotations

import json
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Deque, Optional
from uuid import uuid4

SUBSYSTEM_SESSION = "SESSION"


@dataclass(frozen=True)
class SessionEvent:
    event_id: str
    ts: float
    subsystem: str
    event_type: str
    payload: dict[str, Any]
    reason: str

    def to_json_dict(self) -> dict[str, Any]:
        return asdict(self)


class EventStore:
    def __init__(self, maxlen: int = 1000, enabled: bool = True) -> None:
        self.maxlen = max(1, int(maxlen))
        self.enabled = bool(enabled)
        self._events: Deque[SessionEvent] = deque(maxlen=self.maxlen)
        self._lock = threading.Lock()

    def append(self, event: SessionEvent) -> Optional[SessionEvent]:
        if not self.enabled:
            return None
        with self._lock:
            self._events.append(event)
        return event

    def append_new(
        self,
        *,
        event_type: str,
        payload: dict[str, Any],
        reason: str = "",
        subsystem: str = SUBSYSTEM_SESSION,
        ts: float | None = None,
    ) -> Optional[SessionEvent]:
        event = SessionEvent(
            event_id=str(uuid4()),
            ts=float(time.time() if ts is None else ts),
            subsystem=str(subsystem),
            event_type=str(event_type),
            payload=dict(payload),
            reason=str(reason or ""),
        )
        return self.append(event)

    def recent(self, n: int = 20) -> list[SessionEvent]:
        limit = max(0, int(n))
        if limit == 0:
            return []
        with self._lock:
            return list(self._events)[-limit:]

    def filter(
        self,
        *,
        subsystem: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> list[SessionEvent]:
        with self._lock:
            events = list(self._events)
        result: list[SessionEvent] = []
        for event in events:
            if subsystem is not None and event.subsystem != subsystem:
                continue
            if event_type is not None and event.event_type != event_type:
                continue
            result.append(event)
        return result

    def export_jsonl(self, path: str) -> int:
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            events = list(self._events)
        with out_path.open("w", encoding="utf-8") as handle:
            for event in events:
                handle.write(json.dumps(event.to_json_dict(), ensure_ascii=True))
                handle.write("\n")
        return len(events)
