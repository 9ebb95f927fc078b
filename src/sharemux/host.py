"""Hosting process: wires config, multiplexer, acceptor, pidfile and the application."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Optional

from .app.scratchpad import Application, ScratchpadApp
from .config import ServerConfig
from .core.acceptor import Acceptor
from .core.adapter import SessionAdapter
from .core.authenticator import Authenticator
from .core.event_store import EventStore
from .core.multiplexer import Multiplexer
from .core.session import Permission
from .core.stream import TerminalStream
from .pidfile import PidFile

logger = logging.getLogger(__name__)


class SessionHost:
    """Runs one application instance behind a listener.

    ``start`` binds before the application loop starts so a bind failure
    leaves nothing running. ``stop`` is idempotent and safe to call from a
    signal handler path, an ``atexit`` hook and ``__exit__``.
    """

    def __init__(
        self,
        config: ServerConfig,
        application: Optional[Application] = None,
        pidfile_path: Optional[Path | str] = None,
    ) -> None:
        self.config = config
        self.application: Application = application or ScratchpadApp(
            width=config.width, height=config.height, frame_hz=config.frame_hz
        )
        self.pidfile = PidFile(pidfile_path) if pidfile_path is not None else None
        self.event_store = EventStore(maxlen=config.event_store_maxlen, enabled=config.audit_enabled)
        self.multiplexer = Multiplexer(event_store=self.event_store)
        self.acceptor = Acceptor(
            self.multiplexer,
            Authenticator(
                config.password,
                max_attempts=config.auth_max_attempts,
                timeout_s=config.auth_timeout_s,
            ),
            host=config.bind_host,
            port=config.port,
            backlog=config.listen_backlog,
            first_client_free=config.first_client_free,
            outbound_queue_size=config.outbound_queue_size,
            io_timeout_s=config.write_timeout_s,
            chunk_size=config.read_chunk_size,
        )
        self._app_thread: threading.Thread | None = None
        self._done = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

    @property
    def port(self) -> int:
        return self.acceptor.port

    @property
    def fault(self) -> BaseException | None:
        return self.acceptor.fault

    def start(self) -> int:
        """Bind, write the pidfile and start the application loop. Returns the port."""
        port = self.acceptor.start()
        try:
            if self.pidfile is not None:
                self.pidfile.write(port)
        except OSError:
            self.acceptor.stop()
            raise
        self.event_store.append_new(
            event_type="SESSION_SERVER_STARTED",
            payload={"host": self.acceptor.host, "port": port},
            reason="STARTED",
        )
        self._app_thread = threading.Thread(target=self._run_application, name="sharemux-app", daemon=True)
        self._app_thread.start()
        return port

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the application stops or the accept loop faults.

        Returns False only when ``timeout`` elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + float(timeout)
        while not self._done.is_set():
            if self.acceptor.fault is not None:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self._done.wait(0.2)
        return True

    def request_stop(self) -> None:
        """Ask the application to finish; ``wait`` then returns.

        The pidfile stays until ``stop`` has shut everything else down.
        """
        self.application.stop()

    def stop(self) -> None:
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        self.application.stop()
        self.acceptor.stop()
        self.multiplexer.shutdown()
        if self._app_thread is not None and self._app_thread is not threading.current_thread():
            self._app_thread.join(timeout=2.0)
        if self.pidfile is not None:
            self.pidfile.remove()
        self.event_store.append_new(
            event_type="SESSION_SERVER_STOPPED",
            payload={"port": self.acceptor.port},
            reason="FAULT" if self.acceptor.fault is not None else "STOPPED",
        )
        logger.info("Host on port %d stopped", self.acceptor.port)
        if self.config.audit_log_path:
            self._export_audit(self.config.audit_log_path)

    def __enter__(self) -> "SessionHost":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _export_audit(self, path: str) -> None:
        try:
            count = self.event_store.export_jsonl(path)
        except OSError as exc:
            logger.warning("Cannot write audit log %s: %s", path, exc)
            return
        logger.info("Wrote %d audit events to %s", count, path)

    def _run_application(self) -> None:
        try:
            self.application.run(self.multiplexer)
        except Exception:  # noqa: BLE001
            logger.exception("Application loop crashed")
        finally:
            self._done.set()


def run_interactive(config: ServerConfig, application: Optional[Application] = None) -> int:
    """Drive ``application`` from the local terminal only, with no listener."""
    app: Application = application or ScratchpadApp(width=config.width, height=config.height, frame_hz=config.frame_hz)
    multiplexer = Multiplexer(event_store=EventStore(maxlen=config.event_store_maxlen))
    stream = TerminalStream(chunk_size=config.read_chunk_size)
    adapter = SessionAdapter(stream, queue_size=config.outbound_queue_size)
    multiplexer.register(adapter, permission=Permission.CONTROL, identity="local")
    try:
        app.run(multiplexer)
    finally:
        multiplexer.shutdown()
    return 0
