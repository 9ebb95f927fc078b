"""Listening socket loop that admits new clients into the multiplexer."""

from __future__ import annotations

import errno
import logging
import socket
import threading
from typing import Optional

from .adapter import SessionAdapter
from .authenticator import Authenticator
from .errors import BindError, MultiplexerClosed
from .multiplexer import Multiplexer
from .session import Permission
from .stream import ByteStream, SocketStream

logger = logging.getLogger(__name__)


class Acceptor:
    """Accepts raw TCP connections and promotes them to registered sessions.

    The accept thread never talks to a client: each connection gets a handler
    thread that either claims the first-client slot or runs the password
    challenge, so an idle client cannot hold up the next ``accept``.
    """

    def __init__(
        self,
        multiplexer: Multiplexer,
        authenticator: Authenticator,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        backlog: int = 5,
        first_client_free: bool = True,
        outbound_queue_size: int = 64,
        io_timeout_s: float = 5.0,
        chunk_size: int = 4096,
    ) -> None:
        self.multiplexer = multiplexer
        self.authenticator = authenticator
        self.host = host
        self.port = int(port)
        self.backlog = max(1, int(backlog))
        self.first_client_free = bool(first_client_free)
        self.outbound_queue_size = int(outbound_queue_size)
        self.io_timeout_s = float(io_timeout_s)
        self.chunk_size = int(chunk_size)

        self._sock: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._pending_lock = threading.Lock()
        self._pending: set[ByteStream] = set()
        self.fault: BaseException | None = None
        if self.authenticator.on_failure is None:
            self.authenticator.on_failure = self._audit_auth_failure

    @property
    def address(self) -> tuple[str, int]:
        return self.host, self.port

    @property
    def running(self) -> bool:
        return self._accept_thread is not None and self._accept_thread.is_alive()

    def start(self, bind_address: Optional[tuple[str, int]] = None) -> int:
        """Bind, listen and start the accept thread. Returns the bound port."""
        if self._sock is not None:
            return self.port
        host, port = bind_address if bind_address is not None else (self.host, self.port)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, int(port)))
            sock.listen(self.backlog)
        except OSError as exc:
            sock.close()
            raise BindError(f"cannot bind {host}:{port}: {exc}") from exc
        sock.settimeout(0.2)
        self._sock = sock
        self.host, self.port = sock.getsockname()[0], int(sock.getsockname()[1])

        self._stop.clear()
        self._accept_thread = threading.Thread(target=self._accept_loop, name="sharemux-accept", daemon=True)
        self._accept_thread.start()
        logger.info("Listening on %s:%d", self.host, self.port)
        return self.port

    def stop(self) -> None:
        """Stop accepting. Registered sessions are left to the multiplexer."""
        if self._stop.is_set():
            return
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
        with self._pending_lock:
            pending = list(self._pending)
            self._pending.clear()
        for stream in pending:
            stream.close()
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(timeout=1.0)

    def __enter__(self) -> "Acceptor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _accept_loop(self) -> None:
        assert self._sock is not None
        while not self._stop.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                if exc.errno in (errno.EBADF, errno.EINVAL, errno.ENOTSOCK):
                    logger.error("Accept loop fault: %s", exc)
                    self.fault = exc
                    break
                logger.warning("Transient accept error: %s", exc)
                self._stop.wait(0.05)
                continue
            try:
                thread = threading.Thread(
                    target=self._handle_connection,
                    args=(conn,),
                    name=f"sharemux-admit-{addr[0]}:{addr[1]}",
                    daemon=True,
                )
                thread.start()
            except RuntimeError as exc:
                logger.warning("Cannot start handler for %s: %s", addr, exc)
                conn.close()

    def _handle_connection(self, conn: socket.socket) -> None:
        try:
            stream = SocketStream(conn, chunk_size=self.chunk_size, io_timeout_s=self.io_timeout_s)
        except OSError as exc:
            logger.warning("Dropping connection during setup: %s", exc)
            conn.close()
            return
        if not self._hold(stream):
            stream.close()
            return
        try:
            self._admit(stream)
        except MultiplexerClosed:
            stream.close()
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error admitting %s", stream.peer)
            stream.close()
        finally:
            with self._pending_lock:
                self._pending.discard(stream)

    def _hold(self, stream: ByteStream) -> bool:
        """Track ``stream`` as pending so ``stop`` can abort its admission."""
        with self._pending_lock:
            if self._stop.is_set():
                return False
            self._pending.add(stream)
            return True

    def _release(self, stream: ByteStream) -> bool:
        """Take ``stream`` out of the pending set before it is registered.

        Once released, ``stop`` no longer owns it. Returns False if the
        acceptor is already stopping.
        """
        with self._pending_lock:
            self._pending.discard(stream)
            return not self._stop.is_set()

    def _admit(self, stream: ByteStream) -> None:
        adapter = SessionAdapter(stream, queue_size=self.outbound_queue_size)
        if self.first_client_free:
            if not self._release(stream):
                stream.close()
                return
            if self.multiplexer.register_first(adapter) is not None:
                return
            if not self._hold(stream):
                stream.close()
                return
        if not self.authenticator.authenticate(stream):
            stream.close()
            return
        if not self._release(stream):
            stream.close()
            return
        self.multiplexer.register(adapter, permission=Permission.CONTROL)

    def _audit_auth_failure(self, stream: ByteStream, attempt: int, reason: str) -> None:
        self.multiplexer.event_store.append_new(
            event_type="SESSION_CLIENT_AUTH_FAILED",
            payload={"addr": stream.peer, "attempt": attempt},
            reason=reason,
        )
