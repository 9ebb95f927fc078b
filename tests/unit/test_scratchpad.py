from __future__ import annotations

import threading
import time

from sharemux.app.scratchpad import ScratchpadApp
from sharemux.core.adapter import SessionAdapter
from sharemux.core.multiplexer import Multiplexer
from sharemux.core.session import InputEvent, Permission, SessionSummary


def _wait_until(predicate, timeout_s: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def _text(ch: str, session_id: int = 1) -> InputEvent:
    return InputEvent(kind="text", key=ch, text=ch, session_id=session_id)


def _key(name: str, session_id: int = 1) -> InputEvent:
    return InputEvent(kind="key", key=name, session_id=session_id)


def test_editing_keys() -> None:
    app = ScratchpadApp()
    for event in (_text("h"), _text("i"), _key("enter"), _text("x"), _key("backspace"), _key("backspace")):
        app.handle(event)
    assert app.text == "hi"
    assert app.handle(_key("up")) is False
    assert app.handle(_key("backspace")) is True
    assert app.handle(_key("backspace")) is True
    assert app.handle(_key("backspace")) is False
    assert app.text == ""


def test_ctrl_q_stops() -> None:
    app = ScratchpadApp()
    assert app.handle(_key("ctrl+q")) is False
    assert app._stop.is_set()  # noqa: SLF001


def test_render_fits_screen_and_lists_clients() -> None:
    app = ScratchpadApp(width=60, height=20)
    app.handle(_text("a", session_id=7))
    summaries = [
        SessionSummary(id=7, identity="client-7@x", permission=Permission.CONTROL, connected_at=time.time(), idle_seconds=0)
    ]
    frame = app.render(summaries)
    assert (frame.width, frame.height) == (60, 20)
    assert len(frame.lines) == 20
    assert frame.lines[0].startswith(" sharemux - 1 client(s)")
    assert frame.lines[1] == "a"
    assert frame.cursor == (1, 1)
    assert "session 7" in "".join(frame.lines)
    assert any("Read+Write" in line for line in frame.lines)


def test_long_text_scrolls_within_pad() -> None:
    app = ScratchpadApp(width=20, height=10)
    for i in range(30):
        app.handle(_text(str(i % 10)))
        app.handle(_key("enter"))
    frame = app.render([])
    assert len(frame.lines) == 10
    assert all(len(line) <= 20 for line in frame.lines)


def test_run_consumes_input_and_broadcasts(memory_stream) -> None:
    mux = Multiplexer()
    stream = memory_stream()
    mux.register(SessionAdapter(stream))
    app = ScratchpadApp(width=40, height=12, frame_hz=20)
    runner = threading.Thread(target=app.run, args=(mux,), daemon=True)
    runner.start()
    try:
        assert _wait_until(lambda: app.running)
        stream.feed(b"ok")
        assert _wait_until(lambda: app.text == "ok")
        assert _wait_until(lambda: b"ok" in stream.output())
        stream.feed(b"\x11")
        runner.join(2.0)
        assert not runner.is_alive()
        assert not app.running
    finally:
        app.stop()
        mux.shutdown()


def test_run_ends_on_multiplexer_shutdown() -> None:
    mux = Multiplexer()
    app = ScratchpadApp(frame_hz=2)
    runner = threading.Thread(target=app.run, args=(mux,), daemon=True)
    runner.start()
    assert _wait_until(lambda: app.running)
    mux.shutdown()
    runner.join(2.0)
    assert not runner.is_alive()
