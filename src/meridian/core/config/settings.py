"""
Centralized settings for meridian.

Manifesto:
    Every node in a cluster must agree on the RPC topology, the channel and
    schedule names, and the tick cadence. One validated, cached settings
    object resolves those values in a single place instead of letting each
    component read the environment on its own.

:class:`MeridianSettings` reads ``MERIDIAN_*`` environment variables and a
``.env`` file. :func:`load_settings` additionally layers a TOML file
underneath the environment, so a shared cluster file can be checked in and
per-node overrides supplied via env.

Tags:
    meridian, configuration, settings, pydantic, caching, validation, toml

Doc-Types:
    api-reference
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from meridian.core.errors import ConfigError


class TransportBackend(str, Enum):
    """RPC transport implementations."""

    MEMORY = "memory"
    REDIS = "redis"


class RpcPeerConfig(BaseModel):
    """One entry of the cluster topology.

    ``dependencies`` is either ``"all"`` (connect to every other peer) or
    a list of service names whose providers this peer connects to.
    """

    host: str = "localhost"
    port: int = 0
    services: list[str] = Field(default_factory=list)
    dependencies: Literal["all"] | list[str] | None = None
    fallback_to_local: bool = True


class MeridianSettings(BaseSettings):
    """Meridian node configuration.

    All fields can be set via ``MERIDIAN_*`` environment variables (e.g.
    ``MERIDIAN_APP_ID=schedule-1``) or through a ``.env`` file. Nested
    topology entries use ``__`` (``MERIDIAN_RPC__WEB_1__PORT=8001``).
    """

    model_config = SettingsConfigDict(
        env_prefix="MERIDIAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Identity / storage ───────────────────────────────────────
    app_id: str = Field(default="", description="Id of this process in the RPC topology")
    root_path: Path = Field(default=Path("."))
    save_schedules: bool = Field(default=False)

    # ── Names ────────────────────────────────────────────────────
    channel_name: str = Field(default="app.message")
    schedule_name: str = Field(default="app.schedule")
    schedule_service: str = Field(default="schedule", description="RPC role of the schedule store")

    # ── Timing ───────────────────────────────────────────────────
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    flush_interval_seconds: int = Field(default=900, gt=0)
    connect_retry_seconds: float = Field(default=1.0, gt=0)

    # ── Transport ────────────────────────────────────────────────
    transport: TransportBackend = Field(default=TransportBackend.MEMORY)
    redis_url: str = Field(default="redis://localhost:6379/0")
    rpc_prefix: str = Field(default="meridian:rpc")
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)
    rpc: dict[str, RpcPeerConfig] = Field(default_factory=dict)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def cache_dir(self) -> Path:
        return self.root_path / "cache"

    def snapshot_path(self, app_id: str) -> Path:
        """Location of the task snapshot written by ``app_id``."""
        return self.cache_dir / f"schedules-{app_id}.json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, MeridianSettings] = {}


def load_settings(path: str | Path | None = None, **overrides: Any) -> MeridianSettings:
    """Build settings from an optional TOML file, the environment and overrides.

    Precedence, lowest first: TOML file, ``.env`` / environment, keyword
    overrides.

    Raises:
        ConfigError: If the TOML file is missing or malformed.
    """
    if path is None:
        return MeridianSettings(**overrides)

    file = Path(path)
    try:
        data: dict[str, Any] = tomllib.loads(file.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read config file {file}: {e}", cause=e) from e

    # Fields set through the environment win over the file.
    from_env = MeridianSettings()
    data.update(from_env.model_dump(include=from_env.model_fields_set))
    data.update(overrides)
    return MeridianSettings(**data)


def get_settings(
    *,
    config_file: str | Path | None = None,
    _force_reload: bool = False,
) -> MeridianSettings:
    """Load, validate, and cache a :class:`MeridianSettings` instance."""
    cache_key = str(Path(config_file).resolve()) if config_file else ""

    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    settings = load_settings(config_file)
    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
