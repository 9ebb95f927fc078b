"""Shared-session core: acceptor, authenticator, adapters and the multiplexer."""

from .acceptor import Acceptor
from .adapter import SessionAdapter
from .authenticator import PROMPT, Authenticator
from .codec import AnsiFrameEncoder, AnsiInputDecoder, FrameEncoder, InputDecoder
from .errors import (
    AuthFailure,
    BindError,
    ConfigError,
    MultiplexerClosed,
    SessionIOError,
    SharemuxError,
)
from .event_store import EventStore, SessionEvent
from .multiplexer import Multiplexer
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
from .stream import ByteStream, SocketStream, TerminalStream

__all__ = [
    "Acceptor",
    "AnsiFrameEncoder",
    "AnsiInputDecoder",
    "AuthFailure",
    "Authenticator",
    "BindError",
    "ByteStream",
    "ConfigError",
    "END_OF_STREAM",
    "EndOfStream",
    "EventStore",
    "Frame",
    "FrameEncoder",
    "InputDecoder",
    "InputEvent",
    "Multiplexer",
    "MultiplexerClosed",
    "PROMPT",
    "Permission",
    "Session",
    "SessionAdapter",
    "SessionEvent",
    "SessionIOError",
    "SessionRegistry",
    "SessionSummary",
    "SharemuxError",
    "SocketStream",
    "TerminalStream",
    "permission_from_any",
]
