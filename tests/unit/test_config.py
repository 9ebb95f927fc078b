from __future__ import annotations

import json

import pytest

from sharemux.config import DEFAULT_PASSWORD, ServerConfig, config_from_env, load_config
from sharemux.core.errors import ConfigError


def test_defaults() -> None:
    config = ServerConfig()
    assert config.bind_host == "127.0.0.1"
    assert config.port == 0
    assert config.password == DEFAULT_PASSWORD
    assert config.auth_max_attempts == 3
    assert config.first_client_free is True
    assert (config.width, config.height) == (80, 24)


def test_load_yaml_with_section(tmp_path) -> None:
    path = tmp_path / "sharemux.yaml"
    path.write_text("sharemux:\n  password: hunter2\n  port: 4100\n  frame_hz: 4\n", encoding="utf-8")
    config = load_config(path)
    assert config.password == "hunter2"
    assert config.port == 4100
    assert config.frame_hz == 4.0


def test_load_json(tmp_path) -> None:
    path = tmp_path / "sharemux.json"
    path.write_text(json.dumps({"width": 120, "first_client_free": False}), encoding="utf-8")
    config = load_config(path)
    assert config.width == 120
    assert config.first_client_free is False


def test_empty_yaml_gives_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == ServerConfig()


@pytest.mark.parametrize(
    "body",
    [
        "port: 70000\n",
        "unknown_key: 1\n",
        "- just\n- a list\n",
        "width: [unclosed\n",
    ],
)
def test_invalid_yaml_raises_config_error(tmp_path, body) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_file_raises_config_error(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml")


def test_env_overrides() -> None:
    env = {
        "SHAREMUX_PASSWORD": "from-env",
        "SHAREMUX_PORT": "5555",
        "SHAREMUX_FIRST_CLIENT_FREE": "no",
        "SHAREMUX_AUTH_MAX_ATTEMPTS": "1",
        "SHAREMUX_AUDIT_LOG": "/tmp/sharemux-audit.jsonl",
    }
    config = config_from_env(ServerConfig(width=100), env=env)
    assert config.password == "from-env"
    assert config.port == 5555
    assert config.first_client_free is False
    assert config.auth_max_attempts == 1
    assert config.audit_log_path == "/tmp/sharemux-audit.jsonl"
    assert config.width == 100


def test_password_file_wins_over_password(tmp_path) -> None:
    secret = tmp_path / "secret.txt"
    secret.write_text("filed\n", encoding="utf-8")
    env = {"SHAREMUX_PASSWORD": "plain", "SHAREMUX_PASSWORD_FILE": str(secret)}
    assert config_from_env(env=env).password == "filed"


def test_bad_env_override_raises_config_error() -> None:
    with pytest.raises(ConfigError):
        config_from_env(env={"SHAREMUX_PORT": "not-a-port"})
