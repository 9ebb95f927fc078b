"""Shared scratchpad: the built-in application driven by every CONTROL session."""

from __future__ import annotations

import logging
import threading
import time
from typing import Protocol, Sequence

from ..core.multiplexer import Multiplexer
from ..core.session import EndOfStream, Frame, InputEvent, SessionSummary
from ..ui.clients_table import clients_table_lines

logger = logging.getLogger(__name__)


class Application(Protocol):
    """Anything the host can drive: it consumes merged input and broadcasts frames."""

    @property
    def running(self) -> bool: ...

    def run(self, multiplexer: Multiplexer) -> None: ...

    def stop(self) -> None: ...


class ScratchpadApp:
    """A text pad every attached client sees and every CONTROL client can edit.

    Ctrl-Q stops the application (and with it the host). The lower part of the
    screen lists the attached clients.
    """

    def __init__(self, *, width: int = 80, height: int = 24, frame_hz: float = 8.0, title: str = "sharemux") -> None:
        self.width = max(20, int(width))
        self.height = max(6, int(height))
        self.frame_interval_s = 1.0 / max(0.1, float(frame_hz))
        self.title = title
        self._lines: list[str] = [""]
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._running = False
        self._last_editor = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def stop(self) -> None:
        self._stop.set()

    def run(self, multiplexer: Multiplexer) -> None:
        self._running = True
        self._stop.clear()
        logger.info("Scratchpad started (%dx%d)", self.width, self.height)
        try:
            multiplexer.broadcast(self.render(multiplexer.list_sessions()))
            next_frame = time.monotonic() + self.frame_interval_s
            while not self._stop.is_set():
                timeout = max(0.0, next_frame - time.monotonic())
                event = multiplexer.next_input(timeout=timeout)
                if isinstance(event, EndOfStream):
                    break
                changed = event is not None and self.handle(event)
                if changed or time.monotonic() >= next_frame:
                    if not self._stop.is_set():
                        multiplexer.broadcast(self.render(multiplexer.list_sessions()))
                    next_frame = time.monotonic() + self.frame_interval_s
        finally:
            self._running = False
            logger.info("Scratchpad stopped")

    def handle(self, event: InputEvent) -> bool:
        """Apply one input event. Returns True when the pad changed."""
        if event.kind == "key" and event.key == "ctrl+q":
            logger.info("Quit requested by session %s", event.session_id)
            self._stop.set()
            return False
        with self._lock:
            if event.kind == "text" and event.text:
                self._lines[-1] += event.text
            elif event.kind == "key" and event.key == "enter":
                self._lines.append("")
            elif event.kind == "key" and event.key == "tab":
                self._lines[-1] += "    "
            elif event.kind == "key" and event.key == "backspace":
                if self._lines[-1]:
                    self._lines[-1] = self._lines[-1][:-1]
                elif len(self._lines) > 1:
                    self._lines.pop()
                else:
                    return False
            else:
                return False
            self._last_editor = event.session_id
            return True

    def render(self, summaries: Sequence[SessionSummary]) -> Frame:
        table = clients_table_lines(summaries, self.width)
        table_rows = min(len(table), max(0, self.height // 2 - 1))
        pad_rows = self.height - 2 - table_rows

        header = f" {self.title} - {len(summaries)} client(s) - Ctrl-Q quits"
        with self._lock:
            wrapped: list[str] = []
            for line in self._lines:
                wrapped.extend(_wrap(line, self.width))
            editor = self._last_editor
        visible = wrapped[-pad_rows:] if pad_rows > 0 else []
        cursor_row = 1 + max(0, len(visible) - 1)
        cursor_col = len(visible[-1]) if visible else 0

        rows = [header[: self.width]]
        rows.extend(visible)
        rows.extend([""] * (pad_rows - len(visible)))
        status = f" last edit: session {editor}" if editor else ""
        rows.append(status[: self.width].ljust(self.width, "-") if status else "-" * self.width)
        rows.extend(table[:table_rows])
        return Frame(
            width=self.width,
            height=self.height,
            lines=tuple(rows[: self.height]),
            cursor=(min(cursor_col, self.width - 1), cursor_row),
            title=self.title,
        )


def _wrap(line: str, width: int) -> list[str]:
    if not line:
        return [""]
    return [line[i : i + width] for i in range(0, len(line), width)]
