"""sharemux: one terminal application, many attached network clients."""

__version__ = "0.1.0"

from .core import (  # noqa: E402
    END_OF_STREAM,
    Acceptor,
    Authenticator,
    Frame,
    InputEvent,
    Multiplexer,
    Permission,
    SessionAdapter,
    SessionSummary,
)

__all__ = [
    "Acceptor",
    "Authenticator",
    "END_OF_STREAM",
    "Frame",
    "InputEvent",
    "Multiplexer",
    "Permission",
    "SessionAdapter",
    "SessionSummary",
    "__version__",
]
