"""Password challenge run once per connection before registration."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .errors import AuthFailure, SessionIOError
from .stream import ByteStream

logger = logging.getLogger(__name__)

PROMPT = b"Password: "

FailureHook = Callable[[ByteStream, int, str], None]


class Authenticator:
    """Line-oriented challenge/response gate.

    Blank lines are re-prompted without counting as an attempt. A closed stream
    or an idle timeout fails at once. Wrong answers are counted and the client
    is re-prompted until ``max_attempts`` is reached. Nothing is ever written
    back on failure; the caller just closes the connection.
    """

    def __init__(
        self,
        password: str,
        *,
        max_attempts: int = 3,
        timeout_s: Optional[float] = 60.0,
        on_failure: Optional[FailureHook] = None,
    ) -> None:
        self._expected = password.encode("utf-8")
        self.max_attempts = max(1, int(max_attempts))
        self.timeout_s = None if timeout_s is None or timeout_s <= 0 else float(timeout_s)
        self.on_failure = on_failure

    def authenticate(self, stream: ByteStream) -> bool:
        try:
            self._challenge(stream)
        except AuthFailure as exc:
            logger.info("Authentication failed for %s: %s", stream.peer, exc)
            return False
        return True

    def _challenge(self, stream: ByteStream) -> None:
        deadline = None if self.timeout_s is None else time.monotonic() + self.timeout_s
        failures = 0
        while True:
            try:
                stream.write(PROMPT)
                line = stream.read_line(deadline=deadline)
            except TimeoutError:
                raise AuthFailure("timed out waiting for password") from None
            except SessionIOError as exc:
                raise AuthFailure(f"stream error: {exc}") from exc
            if line is None:
                raise AuthFailure("stream closed during challenge")
            answer = line.strip()
            if not answer:
                continue
            if answer == self._expected:
                return
            failures += 1
            logger.warning("Wrong password from %s (attempt %d/%d)", stream.peer, failures, self.max_attempts)
            if self.on_failure is not None:
                self.on_failure(stream, failures, "WRONG_PASSWORD")
            if failures >= self.max_attempts:
                raise AuthFailure("too many wrong passwords")
