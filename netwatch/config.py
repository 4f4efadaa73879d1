"""Pydantic settings for NetWatch configuration."""

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from netwatch.core.errors import ConfigurationError
from netwatch.core.models import MonitoredDevice, Protocol


def _load_yaml_config() -> dict[str, Any]:
    """Load config from ~/.netwatch/config.yaml, falling back to project config.yaml."""
    user_cfg = Path.home() / ".netwatch" / "config.yaml"
    if user_cfg.exists():
        with open(user_cfg) as f:
            return yaml.safe_load(f) or {}
    project_cfg = Path(__file__).parent.parent / "config.yaml"
    if project_cfg.exists():
        with open(project_cfg) as f:
            return yaml.safe_load(f) or {}
    return {}


class MonitorConfig(BaseModel):
    """One configured device, as written in config.yaml."""

    ip: str
    name: str
    type: Protocol = Protocol.ICMP
    port: int | None = Field(default=None, ge=1, le=65535)
    endpoint: str = "/"

    @field_validator("endpoint")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"


class NetworkConfig(BaseModel):
    """A subnet to sweep and how often."""

    subnet: str
    scan_interval: int = Field(default=300, ge=1)

    @field_validator("subnet")
    @classmethod
    def _valid_subnet(cls, v: str) -> str:
        ipaddress.IPv4Network(v, strict=False)
        return v


class Settings(BaseSettings):
    """NetWatch application settings.

    Priority (highest → lowest): environment variables → config.yaml → defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="NETWATCH_",
        env_nested_delimiter="__",
    )

    # Devices
    monitors: dict[str, list[MonitorConfig]] = Field(default_factory=dict)
    networks: list[NetworkConfig] = Field(default_factory=list)

    # Scheduling
    check_interval: int = Field(default=60, ge=1)
    check_delay: float = Field(default=1.0, ge=0)

    # Timeouts (seconds)
    icmp_timeout: float = Field(default=1.0, gt=0)
    http_timeout: float = Field(default=5.0, gt=0)
    discovery_timeout: float = Field(default=1.0, gt=0)

    # Web
    web_host: str = "127.0.0.1"
    web_port: int = 8556
    metrics_port: int | None = None

    # Logging
    log_level: str = "INFO"

    # Database
    db_path: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        yaml_values = _load_yaml_config()
        # YAML values are defaults; explicit env/init values win
        merged = {**yaml_values, **{k: v for k, v in values.items() if v is not None}}
        return merged

    @property
    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path)
        return Path.home() / ".netwatch" / "data.db"

    def monitored_devices(self) -> list[MonitoredDevice]:
        """Flatten ``monitors`` into devices, in section then declaration order."""
        devices: list[MonitoredDevice] = []
        for section, entries in self.monitors.items():
            for entry in entries:
                devices.append(
                    MonitoredDevice(
                        address=entry.ip,
                        display_name=entry.name,
                        protocol=entry.type,
                        section=section,
                        port=entry.port,
                        http_path=entry.endpoint,
                    )
                )
        return devices


def get_settings(**overrides: Any) -> Settings:
    """Create a Settings instance, optionally with overrides."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
