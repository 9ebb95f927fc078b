from __future__ import annotations

import socket
import threading
import time

import pytest

from sharemux.core.authenticator import PROMPT, Authenticator
from sharemux.core.stream import SocketStream


class _Run:
    def __init__(self, auth: Authenticator, stream: SocketStream) -> None:
        self.result: bool | None = None
        self.thread = threading.Thread(target=self._target, args=(auth, stream), daemon=True)
        self.thread.start()

    def _target(self, auth: Authenticator, stream: SocketStream) -> None:
        self.result = auth.authenticate(stream)

    def join(self, timeout: float = 2.0) -> bool | None:
        self.thread.join(timeout)
        return self.result


@pytest.fixture
def pair():
    server_sock, client_sock = socket.socketpair()
    client_sock.settimeout(2.0)
    stream = SocketStream(server_sock, io_timeout_s=0.05)
    yield stream, client_sock
    stream.close()
    client_sock.close()


def _read_prompts(sock: socket.socket, count: int) -> bytes:
    data = b""
    deadline = time.monotonic() + 2.0
    while data.count(PROMPT) < count and time.monotonic() < deadline:
        data += sock.recv(1024)
    return data


def test_correct_password_is_accepted(pair) -> None:
    stream, client = pair
    run = _Run(Authenticator("secret"), stream)
    assert _read_prompts(client, 1) == PROMPT
    client.sendall(b"secret\r\n")
    assert run.join() is True


def test_blank_lines_reprompt_without_counting(pair) -> None:
    stream, client = pair
    failures: list[int] = []
    auth = Authenticator("secret", max_attempts=1, on_failure=lambda s, n, r: failures.append(n))
    run = _Run(auth, stream)
    client.sendall(b"\r\n\n")
    assert _read_prompts(client, 3).count(PROMPT) == 3
    client.sendall(b"secret\n")
    assert run.join() is True
    assert failures == []


def test_wrong_password_then_correct_is_admitted(pair) -> None:
    stream, client = pair
    failures: list[tuple[int, str]] = []
    auth = Authenticator("secret", max_attempts=3, on_failure=lambda s, n, r: failures.append((n, r)))
    run = _Run(auth, stream)
    client.sendall(b"wrong\r\n")
    assert _read_prompts(client, 2).count(PROMPT) == 2
    client.sendall(b"secret\r\n")
    assert run.join() is True
    assert failures == [(1, "WRONG_PASSWORD")]


def test_single_attempt_mismatch_fails_without_reply(pair) -> None:
    stream, client = pair
    run = _Run(Authenticator("secret", max_attempts=1), stream)
    assert _read_prompts(client, 1) == PROMPT
    client.sendall(b"nope\n")
    assert run.join() is False
    client.settimeout(0.2)
    with pytest.raises(socket.timeout):
        client.recv(16)


def test_attempts_exhausted(pair) -> None:
    stream, client = pair
    failures: list[int] = []
    run = _Run(Authenticator("secret", max_attempts=2, on_failure=lambda s, n, r: failures.append(n)), stream)
    client.sendall(b"a\nb\n")
    assert run.join() is False
    assert failures == [1, 2]


def test_eof_during_challenge_fails(pair) -> None:
    stream, client = pair
    run = _Run(Authenticator("secret"), stream)
    _read_prompts(client, 1)
    client.shutdown(socket.SHUT_WR)
    assert run.join() is False


def test_idle_client_times_out(pair) -> None:
    stream, client = pair
    run = _Run(Authenticator("secret", timeout_s=0.2), stream)
    assert run.join(timeout=3.0) is False


def test_bytes_after_password_line_are_kept(pair) -> None:
    stream, client = pair
    run = _Run(Authenticator("secret"), stream)
    client.sendall(b"secret\r\nabc")
    assert run.join() is True
    assert stream.read_some() == b"abc"
