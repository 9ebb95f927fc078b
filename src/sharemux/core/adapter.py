"""Per-client adapter between a raw byte stream and frames/input events."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Callable

from .codec import ESCAPE_TIMEOUT_S, AnsiFrameEncoder, AnsiInputDecoder, FrameEncoder, InputDecoder
from .errors import SessionIOError
from .session import END_OF_STREAM, EndOfStream, Frame, InputEvent, Permission
from .stream import ByteStream

logger = logging.getLogger(__name__)

_STOP = object()


class SessionAdapter:
    """Owns one stream: a bounded outbound queue with its writer thread, and the
    decoder used by the session's read loop.

    ``send`` never blocks. A full outbound queue means the client stopped
    draining, so the adapter closes itself instead of stalling the broadcast.
    """

    def __init__(
        self,
        stream: ByteStream,
        *,
        encoder: FrameEncoder | None = None,
        decoder: InputDecoder | None = None,
        permission: Permission = Permission.CONTROL,
        queue_size: int = 64,
    ) -> None:
        self.stream = stream
        self.encoder = encoder or AnsiFrameEncoder()
        self.decoder = decoder or AnsiInputDecoder()
        self.session_id = 0
        self.last_activity_at = time.time()
        self.close_reason = ""

        self._permission = permission
        self._permission_lock = threading.Lock()
        self._encode_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self._pending: deque[InputEvent] = deque()
        self._outbound: queue.Queue[object] = queue.Queue(maxsize=max(1, int(queue_size)))
        self._writer: threading.Thread | None = None

    @property
    def peer(self) -> str:
        return self.stream.peer

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def permission(self) -> Permission:
        with self._permission_lock:
            return self._permission

    def set_permission(self, permission: Permission) -> Permission:
        """Set the permission and return the previous one."""
        with self._permission_lock:
            previous = self._permission
            self._permission = permission
            return previous

    def forward_if_permitted(self, event: InputEvent, sink: Callable[[InputEvent], None]) -> bool:
        # Holding the lock across the hand-off makes a demotion effective for the very next event.
        with self._permission_lock:
            if self._permission is not Permission.CONTROL:
                return False
            sink(event)
            return True

    def start(self) -> None:
        if self._writer is not None:
            return
        self._writer = threading.Thread(
            target=self._writer_loop,
            name=f"sharemux-writer-{self.peer}",
            daemon=True,
        )
        self._writer.start()

    def send(self, frame: Frame) -> bool:
        if self._closed:
            return False
        with self._encode_lock:
            data = self.encoder.encode(frame)
        return self.send_bytes(data)

    def send_bytes(self, data: bytes) -> bool:
        if self._closed:
            return False
        try:
            self._outbound.put_nowait(data)
        except queue.Full:
            logger.warning("Session %s (%s) is not draining output; dropping it", self.session_id, self.peer)
            self.close(reason="BACKPRESSURE")
            return False
        return True

    def next_event(self) -> InputEvent | EndOfStream:
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._closed:
                return END_OF_STREAM
            # A held-back ESC is a plain escape key unless the rest arrives soon.
            deadline = time.monotonic() + ESCAPE_TIMEOUT_S if self.decoder.pending else None
            try:
                data = self.stream.read_some(deadline=deadline)
            except TimeoutError:
                self._pending.extend(self.decoder.flush())
                continue
            except (SessionIOError, OSError) as exc:
                logger.debug("Session %s read failed: %s", self.session_id, exc)
                data = b""
            if not data:
                self.close(reason=self.close_reason or "CLIENT_DISCONNECTED")
                self._pending.extend(self.decoder.flush())
                continue
            events = self.decoder.feed(data)
            if events:
                self.last_activity_at = time.time()
            self._pending.extend(events)

    def close(self, *, reason: str = "CLOSED") -> bool:
        """Close the stream and stop the writer. Returns True only for the first call."""
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True
            self.close_reason = reason
        self.stream.close()
        while True:
            try:
                self._outbound.put_nowait(_STOP)
                break
            except queue.Full:
                try:
                    self._outbound.get_nowait()
                except queue.Empty:
                    pass
        return True

    def _writer_loop(self) -> None:
        while True:
            item = self._outbound.get()
            if item is _STOP:
                return
            try:
                self.stream.write(item)  # type: ignore[arg-type]
            except SessionIOError as exc:
                logger.debug("Session %s write failed: %s", self.session_id, exc)
                self.close(reason="WRITE_FAILED")
                return
