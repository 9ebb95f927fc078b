"""Companion client: attaches to a running host over TCP and answers the password prompt."""

from __future__ import annotations

import os
import socket
import threading
from pathlib import Path
from typing import Optional

from .core.authenticator import PROMPT
from .pidfile import read_port


class SessionClient:
    """Raw-byte client. A background reader collects everything the host sends."""

    def __init__(self, *, host: str = "127.0.0.1", port: int, max_buffer: int = 1 << 20) -> None:
        self.host = host
        self.port = int(port)
        self.max_buffer = int(max_buffer)

        self._sock: socket.socket | None = None
        self._reader: threading.Thread | None = None
        self._stop = threading.Event()
        self._cond = threading.Condition()
        self._output = bytearray()
        self._eof = False

    @classmethod
    def from_pidfile(cls, path: Path | str, *, host: str = "127.0.0.1") -> "SessionClient":
        return cls(host=host, port=read_port(path))

    @property
    def connected(self) -> bool:
        return self._sock is not None and not self._eof

    @property
    def closed_by_server(self) -> bool:
        with self._cond:
            return self._eof

    def connect(self, password: Optional[str] = None, *, prompt_timeout: float = 1.0) -> bool:
        """Connect and, if the host prompts, answer with ``password``.

        Returns True when a prompt was seen. Without ``password`` the caller
        answers the prompt itself via ``send_line``. ``SHAREMUX_PASSWORD`` is
        used when no password is passed explicitly.
        """
        if self._sock is not None:
            return False
        sock = socket.create_connection((self.host, self.port), timeout=2.0)
        sock.settimeout(0.5)
        self._sock = sock
        self._stop.clear()
        self._reader = threading.Thread(target=self._reader_loop, name="sharemux-client-reader", daemon=True)
        self._reader.start()

        with self._cond:
            self._cond.wait_for(lambda: bool(self._output) or self._eof, timeout=prompt_timeout)
            prompted = bytes(self._output).startswith(PROMPT)
        if prompted:
            answer = password if password is not None else os.getenv("SHAREMUX_PASSWORD")
            if answer is not None:
                self.send_line(answer)
        return prompted

    def close(self) -> None:
        self._stop.set()
        sock = self._sock
        self._sock = None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                sock.close()
            except OSError:
                pass
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)

    def __enter__(self) -> "SessionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def send_bytes(self, data: bytes) -> bool:
        sock = self._sock
        if sock is None:
            return False
        try:
            sock.sendall(data)
        except OSError:
            return False
        return True

    def send_keys(self, text: str) -> bool:
        return self.send_bytes(text.encode("utf-8"))

    def send_line(self, text: str) -> bool:
        return self.send_bytes(text.encode("utf-8") + b"\r\n")

    def output(self) -> bytes:
        with self._cond:
            return bytes(self._output)

    def text(self) -> str:
        return self.output().decode("utf-8", errors="replace")

    def prompt_count(self) -> int:
        return self.output().count(PROMPT)

    def wait_for(self, needle: bytes | str, timeout: float = 2.0) -> bool:
        """Block until ``needle`` appears in the collected output."""
        raw = needle.encode("utf-8") if isinstance(needle, str) else needle
        with self._cond:
            return self._cond.wait_for(lambda: raw in self._output, timeout=timeout)

    def wait_closed(self, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._eof, timeout=timeout)

    def _reader_loop(self) -> None:
        sock = self._sock
        if sock is None:
            return
        while not self._stop.is_set():
            try:
                chunk = sock.recv(4096)
            except socket.timeout:
                continue
            except OSError:
                chunk = b""
            with self._cond:
                if not chunk:
                    self._eof = True
                    self._cond.notify_all()
                    return
                self._output += chunk
                overflow = len(self._output) - self.max_buffer
                if overflow > 0:
                    del self._output[:overflow]
                self._cond.notify_all()
