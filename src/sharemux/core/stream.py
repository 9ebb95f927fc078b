"""Bidirectional byte streams owned by a single session.

A stream keeps its own read buffer so the line-oriented password exchange and
the raw input decoder can share one connection without losing bytes the client
sent right after its password line.
"""

from __future__ import annotations

import os
import select
import socket
import sys
import threading
import time
from typing import Optional

from .errors import SessionIOError


class ByteStream:
    """Buffered stream base. Subclasses implement the ``_recv``/``_send``/``_close_transport`` hooks."""

    def __init__(self, *, chunk_size: int = 4096, peer: str = "") -> None:
        self.chunk_size = max(1, int(chunk_size))
        self.peer = peer
        self._buffer = bytearray()
        self._read_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def read_line(self, *, max_len: int = 4096, deadline: Optional[float] = None) -> Optional[bytes]:
        """Return one line without its terminator, or None if the stream closed first.

        ``deadline`` is a ``time.monotonic()`` value; passing it raises
        ``TimeoutError`` when no full line arrived in time.
        """
        with self._read_lock:
            while True:
                index = self._buffer.find(b"\n")
                if index >= 0:
                    line = bytes(self._buffer[:index])
                    del self._buffer[: index + 1]
                    return line.rstrip(b"\r\x00")
                if len(self._buffer) > max_len:
                    raise SessionIOError(f"line exceeds {max_len} bytes")
                chunk = self._recv_until(deadline)
                if not chunk:
                    return None
                self._buffer += chunk

    def read_some(self, *, deadline: Optional[float] = None) -> bytes:
        """Return buffered bytes or block for the next chunk. ``b""`` means closed.

        With a ``deadline`` this raises ``TimeoutError`` once it passes.
        """
        with self._read_lock:
            if self._buffer:
                data = bytes(self._buffer)
                self._buffer.clear()
                return data
            return self._recv_until(deadline)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise SessionIOError("stream closed")
        with self._write_lock:
            try:
                self._send(data)
            except OSError as exc:
                raise SessionIOError(str(exc)) from exc

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._close_transport()

    def _recv_until(self, deadline: Optional[float]) -> bytes:
        while not self.closed:
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("no data before deadline")
                if not self._wait_readable(remaining):
                    continue
            try:
                return self._recv(self.chunk_size)
            except TimeoutError:
                continue
            except OSError:
                return b""
        return b""

    def _wait_readable(self, timeout: float) -> bool:
        """Return False if nothing became readable within ``timeout`` seconds."""
        return True

    def _recv(self, size: int) -> bytes:
        raise NotImplementedError

    def _send(self, data: bytes) -> None:
        raise NotImplementedError

    def _close_transport(self) -> None:
        raise NotImplementedError


class SocketStream(ByteStream):
    """Stream over a connected TCP socket.

    ``io_timeout_s`` bounds every blocking send; reads simply retry on timeout
    until the stream is closed.
    """

    def __init__(self, sock: socket.socket, *, chunk_size: int = 4096, io_timeout_s: float = 5.0) -> None:
        try:
            peer_addr = sock.getpeername()
            peer = f"{peer_addr[0]}:{peer_addr[1]}"
        except (OSError, IndexError, TypeError):
            peer = "unknown"
        super().__init__(chunk_size=chunk_size, peer=peer)
        self._sock = sock
        self._sock.settimeout(max(0.05, float(io_timeout_s)))

    def _wait_readable(self, timeout: float) -> bool:
        try:
            ready, _, _ = select.select([self._sock], [], [], timeout)
        except (OSError, ValueError):
            # Closed socket: let _recv report it.
            return True
        return bool(ready)

    def _recv(self, size: int) -> bytes:
        return self._sock.recv(size)

    def _send(self, data: bytes) -> None:
        self._sock.sendall(data)

    def _close_transport(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._sock.close()
        except OSError:
            pass


class TerminalStream(ByteStream):
    """The local controlling terminal, used when running without a listener."""

    _POLL_S = 0.2

    def __init__(self, *, chunk_size: int = 4096) -> None:
        super().__init__(chunk_size=chunk_size, peer="local-tty")
        self._in_fd = sys.stdin.fileno()
        self._out_fd = sys.stdout.fileno()
        self._old_attrs = None
        if os.isatty(self._in_fd):
            import termios
            import tty

            self._old_attrs = termios.tcgetattr(self._in_fd)
            tty.setraw(self._in_fd)

    def _wait_readable(self, timeout: float) -> bool:
        ready, _, _ = select.select([self._in_fd], [], [], min(timeout, self._POLL_S))
        return bool(ready)

    def _recv(self, size: int) -> bytes:
        ready, _, _ = select.select([self._in_fd], [], [], self._POLL_S)
        if not ready:
            raise TimeoutError
        return os.read(self._in_fd, size)

    def _send(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._out_fd, view)
            view = view[written:]

    def _close_transport(self) -> None:
        if self._old_attrs is None:
            return
        import termios

        try:
            termios.tcsetattr(self._in_fd, termios.TCSADRAIN, self._old_attrs)
        except termios.error:
            pass
        self._old_attrs = None
