"""Configuration loading for the Aura controller."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .aura import DEFAULT_BASE_URL, DEFAULT_TOKEN_URL
from .models import parse_duration


def _coerce_duration(value: Any) -> Any:
    if isinstance(value, str):
        return parse_duration(value)
    return value


class AuraConfig(BaseModel):
    base_url: str = Field(DEFAULT_BASE_URL, description="Base URL of the Aura API")
    token_url: str = Field(
        DEFAULT_TOKEN_URL,
        description="OAuth2 token endpoint used for the client credentials flow",
    )
    timeout: timedelta = Field(
        timedelta(seconds=30),
        description="Default upstream timeout and pass deadline when a record sets none",
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("aura.timeout must be positive")
        return value


class ControllerConfig(BaseModel):
    concurrent: int = Field(4, ge=1, description="Number of concurrent reconciles")
    min_retry_delay: timedelta = Field(timedelta(milliseconds=5), description="First backoff delay after a failure")
    max_retry_delay: timedelta = Field(timedelta(seconds=1000), description="Upper bound for backoff delays")
    resync_interval: timedelta = Field(timedelta(minutes=10), description="Period of the full record resync")
    discovery_interval: timedelta = Field(
        timedelta(seconds=5),
        description="Period for picking up new records and spec changes",
    )
    poll_interval: timedelta = Field(timedelta(seconds=1), description="Work queue polling period")
    graceful_shutdown_timeout: timedelta = Field(
        timedelta(seconds=600),
        description="Time given to in-flight passes before shutting down",
    )

    @field_validator(
        "min_retry_delay",
        "max_retry_delay",
        "resync_interval",
        "discovery_interval",
        "poll_interval",
        "graceful_shutdown_timeout",
        mode="before",
    )
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return _coerce_duration(value)

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "ControllerConfig":
        if self.max_retry_delay < self.min_retry_delay:
            raise ValueError("controller.max_retry_delay must not be smaller than controller.min_retry_delay")
        return self


class KubernetesConfig(BaseModel):
    namespace: Optional[str] = Field(
        default_factory=lambda: os.getenv("RUNTIME_NAMESPACE") or None,
        description="Namespace to watch; all namespaces when unset",
    )
    label_selector: Optional[str] = Field(default=None, description="Only reconcile records matching this selector")
    kubeconfig: Optional[str] = Field(
        default=None,
        description="Path to a kubeconfig; in-cluster config is tried first when unset",
    )


class StateConfig(BaseModel):
    path: str = Field("./state", description="Filesystem path for the local backend")


class OperatorConfig(BaseModel):
    aura: AuraConfig = Field(default_factory=AuraConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "OperatorConfig":
        return cls.model_validate(raw or {})

    @classmethod
    def from_yaml(cls, path: Path) -> "OperatorConfig":
        data = yaml.safe_load(path.read_text())
        return cls.from_dict(data)


def load_config(path: str | Path) -> OperatorConfig:
    """Load an OperatorConfig from a YAML file."""
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    return OperatorConfig.from_yaml(config_path)
