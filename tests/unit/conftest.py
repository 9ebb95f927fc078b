from __future__ import annotations

import queue
import threading

import pytest

from sharemux.core.stream import ByteStream


class MemoryStream(ByteStream):
    """In-process stream: tests push client bytes in and inspect what was written."""

    def __init__(self, peer: str = "mem:1", *, fail_writes: bool = False, block_writes: bool = False) -> None:
        super().__init__(chunk_size=4096, peer=peer)
        self.incoming: queue.Queue[bytes] = queue.Queue()
        self.written = bytearray()
        self.fail_writes = fail_writes
        self.block_writes = block_writes
        self.release = threading.Event()
        self._written_lock = threading.Lock()

    def feed(self, data: bytes) -> None:
        self.incoming.put(data)

    def hang_up(self) -> None:
        self.incoming.put(b"")

    def output(self) -> bytes:
        with self._written_lock:
            return bytes(self.written)

    def _recv(self, size: int) -> bytes:
        try:
            return self.incoming.get(timeout=0.05)
        except queue.Empty:
            raise TimeoutError from None

    def _send(self, data: bytes) -> None:
        if self.fail_writes:
            raise BrokenPipeError("peer gone")
        if self.block_writes:
            self.release.wait(5.0)
        with self._written_lock:
            self.written += data

    def _close_transport(self) -> None:
        self.release.set()
        self.incoming.put(b"")


@pytest.fixture
def memory_stream():
    streams: list[MemoryStream] = []

    def _make(peer: str = "", **kwargs) -> MemoryStream:
        stream = MemoryStream(peer or f"mem:{len(streams) + 1}", **kwargs)
        streams.append(stream)
        return stream

    yield _make
    for stream in streams:
        stream.close()
