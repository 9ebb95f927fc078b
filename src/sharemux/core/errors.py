"""Error taxonomy for the shared-session core."""

from __future__ import annotations


class SharemuxError(Exception):
    """Base class for every error raised by sharemux."""


class BindError(SharemuxError, OSError):
    """The listener could not acquire the requested address (fatal at startup)."""


class AuthFailure(SharemuxError):
    """Wrong password, idle timeout or closed stream during the challenge."""


class SessionIOError(SharemuxError, OSError):
    """Read/write fault on a single session stream. Treated as a disconnect."""


class MultiplexerClosed(SharemuxError):
    """Registration attempted after the multiplexer was shut down."""


class ConfigError(SharemuxError, ValueError):
    """Configuration file or environment override is invalid."""
