"""Frame encoders and input decoders for ANSI/ECMA-48 terminals.

The rendering framework and a full terminal emulator live outside sharemux;
these defaults are enough to drive a plain terminal over telnet/netcat.
"""

from __future__ import annotations

import codecs
from typing import Protocol

from .session import Frame, InputEvent

_CSI = "\x1b["

_TELNET_IAC = 0xFF
_TELNET_SB = 0xFA
_TELNET_SE = 0xF0
_TELNET_OPTION_CMDS = {0xFB, 0xFC, 0xFD, 0xFE}
_TELNET_NAWS = 0x1F

# How long a lone ESC waits for the rest of a key sequence.
ESCAPE_TIMEOUT_S = 0.05


class FrameEncoder(Protocol):
    def encode(self, frame: Frame) -> bytes:
        ...


class InputDecoder(Protocol):
    def feed(self, data: bytes) -> list[InputEvent]:
        ...

    @property
    def pending(self) -> bool:
        """True while an incomplete escape sequence is held back."""
        ...

    def flush(self) -> list[InputEvent]:
        """Emit whatever is held back as if no more bytes will follow."""
        ...


class AnsiFrameEncoder:
    """Per-session encoder: full repaint first, then only the rows that changed."""

    def __init__(self) -> None:
        self._last_lines: tuple[str, ...] | None = None
        self._last_size: tuple[int, int] | None = None
        self._last_title = ""

    def reset(self) -> None:
        self._last_lines = None
        self._last_size = None
        self._last_title = ""

    def encode(self, frame: Frame) -> bytes:
        width = max(1, int(frame.width))
        height = max(1, int(frame.height))
        rows = [self._fit(line, width) for line in frame.lines[:height]]
        rows.extend([" " * width] * (height - len(rows)))

        parts: list[str] = [f"{_CSI}?25l"]
        full_repaint = self._last_lines is None or self._last_size != (width, height)
        if full_repaint:
            parts.append(f"{_CSI}H{_CSI}2J")
        if frame.title and frame.title != self._last_title:
            parts.append(f"\x1b]0;{frame.title}\x07")
            self._last_title = frame.title
        for index, row in enumerate(rows):
            if not full_repaint and self._last_lines is not None and self._last_lines[index] == row:
                continue
            parts.append(f"{_CSI}{index + 1};1H{row}")
        if frame.cursor is not None:
            x, y = frame.cursor
            x = min(max(0, int(x)), width - 1)
            y = min(max(0, int(y)), height - 1)
            parts.append(f"{_CSI}{y + 1};{x + 1}H{_CSI}?25h")

        self._last_lines = tuple(rows)
        self._last_size = (width, height)
        return "".join(parts).encode("utf-8")

    @staticmethod
    def _fit(line: str, width: int) -> str:
        clean = "".join(ch if ch >= " " or ch == "\t" else " " for ch in line).replace("\t", " ")
        return clean[:width].ljust(width)


class AnsiInputDecoder:
    """Incremental decoder: UTF-8 text, CSI keys, SGR mouse and telnet noise."""

    _SPECIAL_KEYS = {
        "A": "up",
        "B": "down",
        "C": "right",
        "D": "left",
        "H": "home",
        "F": "end",
        "Z": "backtab",
    }
    _TILDE_KEYS = {
        "1": "home",
        "2": "insert",
        "3": "delete",
        "4": "end",
        "5": "pageup",
        "6": "pagedown",
        "7": "home",
        "8": "end",
        "11": "f1",
        "12": "f2",
        "13": "f3",
        "14": "f4",
        "15": "f5",
        "17": "f6",
        "18": "f7",
        "19": "f8",
        "20": "f9",
        "21": "f10",
        "23": "f11",
        "24": "f12",
    }

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._telnet_pending = bytearray()
        self._last_was_cr = False
        self._telnet_events: list[InputEvent] = []

    @property
    def pending(self) -> bool:
        return self._buffer.startswith("\x1b")

    def feed(self, data: bytes) -> list[InputEvent]:
        self._buffer += self._utf8.decode(self._strip_telnet(data))
        events, self._telnet_events = self._telnet_events, []
        return events + self._drain_events()

    def flush(self) -> list[InputEvent]:
        held, self._buffer = self._buffer, ""
        if not held:
            return []
        if held == "\x1b":
            return [InputEvent(kind="key", key="escape", raw=held)]
        if len(held) == 2 and held[0] == "\x1b":
            return [InputEvent(kind="key", key=f"alt+{held[1]}", raw=held)]
        return [InputEvent(kind="noop", raw=held)]

    def _strip_telnet(self, data: bytes) -> bytes:
        raw = self._telnet_pending + data
        self._telnet_pending = bytearray()
        out = bytearray()
        i = 0
        while i < len(raw):
            byte = raw[i]
            if byte != _TELNET_IAC:
                out.append(byte)
                i += 1
                continue
            if i + 1 >= len(raw):
                self._telnet_pending = bytearray(raw[i:])
                break
            cmd = raw[i + 1]
            if cmd == _TELNET_IAC:
                out.append(_TELNET_IAC)
                i += 2
            elif cmd in _TELNET_OPTION_CMDS:
                if i + 2 >= len(raw):
                    self._telnet_pending = bytearray(raw[i:])
                    break
                i += 3
            elif cmd == _TELNET_SB:
                end = raw.find(bytes([_TELNET_IAC, _TELNET_SE]), i + 2)
                if end == -1:
                    self._telnet_pending = bytearray(raw[i:])
                    break
                self._subnegotiation(bytes(raw[i + 2 : end]))
                i = end + 2
            else:
                i += 2
        return bytes(out)

    def _subnegotiation(self, body: bytes) -> None:
        # NAWS: option, width and height as 16-bit big-endian, IAC doubled.
        body = body.replace(bytes([_TELNET_IAC, _TELNET_IAC]), bytes([_TELNET_IAC]))
        if len(body) == 5 and body[0] == _TELNET_NAWS:
            cols = int.from_bytes(body[1:3], "big")
            rows = int.from_bytes(body[3:5], "big")
            self._telnet_events.append(InputEvent(kind="resize", x=cols, y=rows))

    def _drain_events(self) -> list[InputEvent]:
        events: list[InputEvent] = []
        while self._buffer:
            if self._buffer.startswith(f"{_CSI}<"):
                parsed = self._parse_sgr_mouse()
                if parsed is None:
                    break
                events.append(parsed)
                continue
            if self._buffer.startswith(_CSI) or self._buffer.startswith("\x1bO"):
                parsed_key = self._parse_special_key()
                if parsed_key is None:
                    break
                events.append(parsed_key)
                continue
            char = self._buffer[0]
            if char == "\x1b":
                if len(self._buffer) == 1:
                    # Could be the start of a sequence split across reads; see flush().
                    break
                nxt = self._buffer[1]
                self._buffer = self._buffer[2:]
                events.append(InputEvent(kind="key", key=f"alt+{nxt}", raw=char + nxt))
                continue
            self._buffer = self._buffer[1:]
            was_cr = self._last_was_cr
            self._last_was_cr = char == "\r"
            if char == "\n" and was_cr:
                continue
            if char == "\x00":
                continue
            if char in {"\r", "\n"}:
                events.append(InputEvent(kind="key", key="enter", raw=char))
            elif char in {"\x7f", "\x08"}:
                events.append(InputEvent(kind="key", key="backspace", raw=char))
            elif char == "\t":
                events.append(InputEvent(kind="key", key="tab", raw=char))
            elif ord(char) < 0x20:
                events.append(InputEvent(kind="key", key=f"ctrl+{chr(ord(char) + 0x60)}", raw=char))
            else:
                events.append(InputEvent(kind="text", key=char, text=char, raw=char))
        return events

    def _parse_special_key(self) -> InputEvent | None:
        body_start = 2
        end = body_start
        while end < len(self._buffer) and not ("@" <= self._buffer[end] <= "~"):
            end += 1
        if end >= len(self._buffer):
            if len(self._buffer) > 16:
                self._buffer = self._buffer[1:]
                return InputEvent(kind="noop")
            return None
        token = self._buffer[: end + 1]
        self._buffer = self._buffer[end + 1 :]
        final = token[-1]
        params = token[body_start:-1]
        if final == "~":
            key = self._TILDE_KEYS.get(params.split(";")[0], "")
        elif token.startswith("\x1bO") and final in "PQRS":
            key = {"P": "f1", "Q": "f2", "R": "f3", "S": "f4"}[final]
        else:
            key = self._SPECIAL_KEYS.get(final, "")
        if not key:
            return InputEvent(kind="noop", raw=token)
        return InputEvent(kind="key", key=key, raw=token)

    def _parse_sgr_mouse(self) -> InputEvent | None:
        terminators = [idx for idx in (self._buffer.find("M"), self._buffer.find("m")) if idx != -1]
        if not terminators:
            return None
        terminator_index = min(terminators)
        token = self._buffer[: terminator_index + 1]
        self._buffer = self._buffer[terminator_index + 1 :]
        # ESC [ < Cb ; Cx ; Cy M/m
        try:
            code_s, x_s, y_s = token[3:-1].split(";")
            code = int(code_s)
            col = int(x_s)
            row = int(y_s)
        except ValueError:
            return InputEvent(kind="noop", raw=token)
        x, y = col - 1, row - 1
        if code & 64:
            delta = 1 if (code & 3) == 0 else -1
            return InputEvent(kind="wheel", x=x, y=y, delta=delta, raw=token)
        kind = "mouse_motion" if code & 32 else ("mouse_up" if token.endswith("m") else "mouse_down")
        return InputEvent(kind=kind, x=x, y=y, button=code & 3, raw=token)
