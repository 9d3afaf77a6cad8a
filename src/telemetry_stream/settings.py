"""Application settings."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from telemetry_stream.exceptions import ConfigError


class ChannelSettings(BaseModel):
    url: str = "ws://localhost:8081"
    reconnect_delay_ms: int = Field(default=1500, ge=10, le=60_000)
    heartbeat_interval_ms: int = Field(default=20_000, ge=10, le=600_000)
    connect_timeout_s: float = Field(default=10.0, gt=0.0)


class StoreSettings(BaseModel):
    capacity: int = Field(default=600, ge=1, le=1_000_000)


class MockServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8092, ge=1, le=65535)
    tick_ms: int = Field(default=800, ge=10, le=60_000)
    nodes: list[str] = Field(default_factory=lambda: ["NYC", "LA", "Frankfurt", "Tokyo", "Sydney"])
    mode: str = "NORMAL"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = False


class Settings(BaseSettings):
    """Configuration for the telemetry stream client and mock feed.

    Values come from (highest priority first) explicit arguments, environment
    variables prefixed with ``TELEMETRY_`` (nested with ``__``, e.g.
    ``TELEMETRY_CHANNEL__URL``), and ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    channel: ChannelSettings = Field(default_factory=ChannelSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    mock_server: MockServerSettings = Field(default_factory=MockServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_settings(path: str | Path | None = None) -> Settings:
    """Build settings from an optional YAML file.

    Values from the file win over environment variables.
    """
    data = _read_yaml(Path(path)) if path is not None else {}
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    return load_settings()
