"""Shared data model: permissions, sessions, frames and input events."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .adapter import SessionAdapter


class Permission(str, Enum):
    OBSERVE = "OBSERVE"
    CONTROL = "CONTROL"

    @property
    def label(self) -> str:
        return "Read+Write" if self is Permission.CONTROL else "Read-Only"


def permission_from_any(value: Permission | str) -> Permission:
    if isinstance(value, Permission):
        return value
    normalized = str(value or "").strip().upper()
    aliases = {
        "CONTROL": Permission.CONTROL,
        "RW": Permission.CONTROL,
        "READ+WRITE": Permission.CONTROL,
        "OBSERVE": Permission.OBSERVE,
        "RO": Permission.OBSERVE,
        "READ-ONLY": Permission.OBSERVE,
    }
    try:
        return aliases[normalized]
    except KeyError:
        raise ValueError(f"unknown permission: {value!r}") from None


class EndOfStream:
    """Sentinel type: the session disconnected or the multiplexer shut down."""

    _instance: "EndOfStream | None" = None

    def __new__(cls) -> "EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = EndOfStream()


@dataclass(frozen=True)
class InputEvent:
    kind: str
    key: str = ""
    text: str = ""
    raw: str = ""
    x: int = 0
    y: int = 0
    button: int = 0
    delta: int = 0
    session_id: int = 0


@dataclass(frozen=True)
class Frame:
    width: int
    height: int
    lines: tuple[str, ...] = ()
    cursor: tuple[int, int] | None = None
    title: str = ""

    @classmethod
    def from_text(cls, text: str, *, width: int = 80, height: int = 24, title: str = "") -> "Frame":
        lines = tuple(line[:width] for line in text.splitlines()[:height])
        return cls(width=width, height=height, lines=lines, title=title)


@dataclass
class Session:
    """One registered client. Permission and activity live on the adapter."""

    id: int
    adapter: SessionAdapter
    identity: str
    address: str = ""
    is_first_client: bool = False
    connected_at: float = field(default_factory=time.time)

    @property
    def permission(self) -> Permission:
        return self.adapter.permission

    @property
    def last_activity_at(self) -> float:
        return self.adapter.last_activity_at

    @property
    def closed(self) -> bool:
        return self.adapter.closed

    def idle_seconds(self, now: float | None = None) -> int:
        now_ts = time.time() if now is None else float(now)
        return max(0, int(now_ts - self.last_activity_at))

    def summary(self, now: float | None = None) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            identity=self.identity,
            permission=self.permission,
            connected_at=self.connected_at,
            idle_seconds=self.idle_seconds(now),
            is_first_client=self.is_first_client,
            address=self.address,
        )


@dataclass(frozen=True)
class SessionSummary:
    id: int
    identity: str
    permission: Permission
    connected_at: float
    idle_seconds: int
    is_first_client: bool = False
    address: str = ""
