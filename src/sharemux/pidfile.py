"""Port discovery file for companion processes."""

from __future__ import annotations

import atexit
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class PidFile:
    """Holds the listener port as the file's entire contents.

    ``remove`` is idempotent so the atexit hook, the signal handler and an
    explicit shutdown can all call it.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._written = False
        self._hooked = False

    def write(self, port: int) -> None:
        self.path.write_text(f"{int(port)}", encoding="utf-8")
        with self._lock:
            self._written = True
            if not self._hooked:
                atexit.register(self.remove)
                self._hooked = True
        logger.info("Wrote port %d to %s", port, self.path)

    def remove(self) -> bool:
        with self._lock:
            if not self._written:
                return False
            self._written = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Cannot remove %s: %s", self.path, exc)
            return False
        return True


def read_port(path: Path | str) -> int:
    raw = Path(path).read_text(encoding="utf-8").strip()
    port = int(raw)
    if not 0 < port < 65536:
        raise ValueError(f"invalid port in {path}: {raw!r}")
    return port
