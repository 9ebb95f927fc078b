from __future__ import annotations

import json
import time

import pytest

from sharemux.client import SessionClient
from sharemux.config import ServerConfig
from sharemux.core.errors import BindError
from sharemux.host import SessionHost
from sharemux.main import main


def _wait_until(predicate, timeout_s: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture(autouse=True)
def _no_env_password(monkeypatch):
    monkeypatch.delenv("SHAREMUX_PASSWORD", raising=False)


def _config(**overrides) -> ServerConfig:
    base = {"password": "pw", "frame_hz": 20.0, "width": 80, "height": 16, "write_timeout_s": 0.5}
    base.update(overrides)
    return ServerConfig(**base)


def test_host_writes_pidfile_and_serves_scratchpad(tmp_path) -> None:
    pidfile = tmp_path / "sharemux.pid"
    host = SessionHost(_config(), pidfile_path=pidfile)
    port = host.start()
    owner = SessionClient.from_pidfile(pidfile)
    guest = SessionClient(port=port)
    try:
        assert pidfile.read_text(encoding="utf-8") == str(port)

        assert owner.connect(prompt_timeout=1.0) is False
        assert owner.wait_for("client(s)")
        assert guest.connect(password="pw") is True
        assert _wait_until(lambda: host.multiplexer.session_count == 2)

        owner.send_keys("hello")
        assert _wait_until(lambda: host.application.text == "hello")
        guest.send_keys("!")
        assert _wait_until(lambda: host.application.text == "hello!")
        assert guest.wait_for("hello!")
        assert owner.wait_for("Read+Write")

        owner.send_keys("\x11")
        assert host.wait(timeout=2.0) is True
    finally:
        owner.close()
        guest.close()
        host.stop()

    assert not pidfile.exists()
    assert host.multiplexer.closed
    events = [e.event_type for e in host.event_store.recent(100)]
    assert events[0] == "SESSION_SERVER_STARTED"
    assert events[-1] == "SESSION_SERVER_STOPPED"


def test_host_exports_audit_log_on_stop(tmp_path) -> None:
    audit = tmp_path / "audit" / "events.jsonl"
    with SessionHost(_config(audit_log_path=str(audit))) as host:
        client = SessionClient(port=host.port)
        client.connect(prompt_timeout=0.5)
        assert _wait_until(lambda: host.multiplexer.session_count == 1)
        client.close()
    rows = [json.loads(line) for line in audit.read_text(encoding="utf-8").splitlines()]
    types = [row["event_type"] for row in rows]
    assert types[0] == "SESSION_SERVER_STARTED"
    assert "SESSION_CLIENT_CONNECTED" in types
    assert types[-1] == "SESSION_SERVER_STOPPED"


def test_disabled_audit_records_nothing() -> None:
    with SessionHost(_config(audit_enabled=False)) as host:
        pass
    assert host.event_store.recent(10) == []


def test_host_stop_is_idempotent(tmp_path) -> None:
    pidfile = tmp_path / "sharemux.pid"
    with SessionHost(_config(), pidfile_path=pidfile) as host:
        client = SessionClient(port=host.port)
        client.connect(prompt_timeout=0.5)
        host.request_stop()
        assert host.wait(timeout=2.0)
        assert pidfile.exists()
    host.stop()
    assert not pidfile.exists()
    assert client.wait_closed()
    client.close()
    stopped = host.event_store.filter(event_type="SESSION_SERVER_STOPPED")
    assert len(stopped) == 1


def test_pidfile_removed_after_everything_else_stopped(tmp_path) -> None:
    pidfile = tmp_path / "sharemux.pid"
    host = SessionHost(_config(), pidfile_path=pidfile)
    seen: list[tuple[bool, bool]] = []
    real_remove = host.pidfile.remove

    def _remove() -> bool:
        seen.append((host.multiplexer.closed, host.acceptor.running))
        return real_remove()

    host.pidfile.remove = _remove
    host.start()
    host.request_stop()
    host.wait(timeout=2.0)
    host.stop()
    assert seen[0] == (True, False)
    assert not pidfile.exists()


def test_host_bind_failure_leaves_no_pidfile(tmp_path) -> None:
    pidfile = tmp_path / "sharemux.pid"
    first = SessionHost(_config(), pidfile_path=tmp_path / "first.pid")
    port = first.start()
    try:
        second = SessionHost(_config(port=port), pidfile_path=pidfile)
        with pytest.raises(BindError):
            second.start()
        assert not pidfile.exists()
    finally:
        first.stop()


def test_main_usage_exit_codes(capsys) -> None:
    assert main(["--help"]) == 1
    assert "--server" in capsys.readouterr().out
    assert main(["-?"]) == 1
    assert main(["--version"]) == 1
    assert "sharemux" in capsys.readouterr().out
    assert main(["--width", "0"]) == 1
    assert main(["--bogus"]) == 1


def test_main_bad_config_exits_2(tmp_path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("port: -1\n", encoding="utf-8")
    assert main(["--config", str(bad), "--server", str(tmp_path / "x.pid")]) == 2


def test_main_bind_failure_exits_2(tmp_path) -> None:
    first = SessionHost(_config())
    port = first.start()
    try:
        cfg = tmp_path / "cfg.json"
        cfg.write_text('{"port": %d}' % port, encoding="utf-8")
        assert main(["--config", str(cfg), "--server", str(tmp_path / "x.pid")]) == 2
        assert not (tmp_path / "x.pid").exists()
    finally:
        first.stop()
