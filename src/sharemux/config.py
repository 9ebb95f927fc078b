"""Server configuration: YAML/JSON file plus SHAREMUX_* environment overrides."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .core.errors import ConfigError

DEFAULT_PASSWORD = "ThePasswordToUseWhenNotDefinedInTheRCFile"


class ServerConfig(BaseModel):
    """Settings for the listener, the password gate and session I/O."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    bind_host: str = "127.0.0.1"
    port: int = Field(default=0, ge=0, lt=65536)
    password: str = DEFAULT_PASSWORD
    auth_max_attempts: int = Field(default=3, ge=1)
    auth_timeout_s: float = Field(default=60.0, ge=0.0)
    first_client_free: bool = True
    listen_backlog: int = Field(default=5, ge=1)

    outbound_queue_size: int = Field(default=64, ge=1)
    write_timeout_s: float = Field(default=5.0, gt=0.0)
    read_chunk_size: int = Field(default=4096, ge=1)

    frame_hz: float = Field(default=8.0, gt=0.0)
    width: int = Field(default=80, ge=1)
    height: int = Field(default=24, ge=1)

    event_store_maxlen: int = Field(default=1000, ge=1)
    audit_enabled: bool = True
    # Written as JSON lines when the host stops.
    audit_log_path: Optional[str] = None


def _is_enabled(raw: str) -> bool:
    return raw.strip().lower() not in {"", "0", "false", "no", "off"}


def load_config(path: Path | str) -> ServerConfig:
    """Load a ServerConfig from JSON or YAML with validation."""
    config_path = Path(path)
    try:
        with config_path.open(encoding="utf-8") as f:
            if config_path.suffix.lower() in {".yaml", ".yml"}:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read {config_path}: {exc}") from exc
    if data is None:
        data = {}
    if isinstance(data, dict) and isinstance(data.get("sharemux"), dict):
        data = data["sharemux"]
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    try:
        return ServerConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc


def config_from_env(base: Optional[ServerConfig] = None, env: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Apply SHAREMUX_* overrides on top of ``base`` (or the defaults)."""
    source = os.environ if env is None else env
    updates: dict[str, Any] = {}

    password_file = str(source.get("SHAREMUX_PASSWORD_FILE", "")).strip()
    if password_file:
        try:
            updates["password"] = Path(password_file).read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"cannot read SHAREMUX_PASSWORD_FILE: {exc}") from exc
    elif "SHAREMUX_PASSWORD" in source:
        updates["password"] = str(source["SHAREMUX_PASSWORD"])

    if "SHAREMUX_BIND_HOST" in source:
        updates["bind_host"] = str(source["SHAREMUX_BIND_HOST"]).strip()
    if "SHAREMUX_PORT" in source:
        updates["port"] = source["SHAREMUX_PORT"]
    if "SHAREMUX_AUTH_MAX_ATTEMPTS" in source:
        updates["auth_max_attempts"] = source["SHAREMUX_AUTH_MAX_ATTEMPTS"]
    if "SHAREMUX_FIRST_CLIENT_FREE" in source:
        updates["first_client_free"] = _is_enabled(str(source["SHAREMUX_FIRST_CLIENT_FREE"]))
    if "SHAREMUX_AUDIT_LOG" in source:
        updates["audit_log_path"] = str(source["SHAREMUX_AUDIT_LOG"]).strip() or None

    merged = (base or ServerConfig()).model_dump()
    merged.update(updates)
    try:
        return ServerConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid SHAREMUX_* override: {exc}") from exc
