from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

ENV_PREFIX = "CALLRELAY_"
_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ServerConfig(BaseModel):
    """Relay server settings, loaded from YAML with CALLRELAY_* env overrides."""

    model_config = ConfigDict(extra="forbid")

    listen: str = "0.0.0.0:8383"
    log_level: str = "INFO"
    # answer an unreachable call-initiate with an error frame to the caller
    notify_unreachable: bool = False
    log_payloads: bool = False
    ping_interval: Optional[float] = Field(default=20.0, gt=0)
    ping_timeout: Optional[float] = Field(default=20.0, gt=0)
    max_message_bytes: int = Field(default=1024 * 1024, gt=0)

    @field_validator("listen")
    @classmethod
    def _listen_host_port(cls, value: str) -> str:
        parse_listen(value)
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LEVELS:
            raise ValueError(f"unknown log level {value}")
        return level

    @property
    def host(self) -> str:
        return parse_listen(self.listen)[0]

    @property
    def port(self) -> int:
        return parse_listen(self.listen)[1]

    @property
    def log_level_no(self) -> int:
        return logging.getLevelName(self.log_level)


def parse_listen(value: str) -> Tuple[str, int]:
    if not isinstance(value, str) or ":" not in value:
        raise ValueError(f"listen must be HOST:PORT, got {value!r}")
    host, port = value.rsplit(":", 1)
    if not host or not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"listen must be HOST:PORT, got {value!r}")
    return host, int(port)


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Read YAML config (optional) and apply environment overrides.

    Raises ValueError on unreadable YAML or invalid settings.
    """
    env = os.environ if env is None else env
    data: dict = {}
    if path is not None:
        try:
            data = yaml.safe_load(Path(path).read_text()) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"{path}: invalid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")

    for key in ("listen", "log_level"):
        override = env.get(ENV_PREFIX + key.upper())
        if override:
            data[key] = override

    try:
        return ServerConfig(**data)
    except ValidationError as exc:
        raise ValueError(f"invalid server config: {exc}") from exc


__all__ = ["ServerConfig", "load_config", "parse_listen"]
