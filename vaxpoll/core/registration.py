"""
Registration file: which sites to poll and which channels to notify.

JSON shape:
  admin_notifications: [backend name, ...]
  services: [{title, provider, sleep, settings, notifications: [backend name, ...]}]
  notifications: {name: {provider, enabled, settings}}

Everything here is validated before the engine starts; any problem is a
ConfigurationError and nothing runs.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from vaxpoll.core.errors import ConfigurationError


class SourceRegistration(BaseModel):
    title: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    # Poll interval in seconds
    sleep: float = Field(gt=0)
    settings: dict[str, Any] = Field(default_factory=dict)
    notifications: list[str] = Field(default_factory=list)


class BackendRegistration(BaseModel):
    provider: str = Field(min_length=1)
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)


class AppConfig(BaseModel):
    admin_notifications: list[str] = Field(default_factory=list)
    services: list[SourceRegistration] = Field(min_length=1)
    notifications: dict[str, BackendRegistration] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_references(self) -> AppConfig:
        seen: set[str] = set()
        for svc in self.services:
            if svc.title in seen:
                raise ValueError(f"duplicate service title: {svc.title}")
            seen.add(svc.title)
            unknown = [n for n in svc.notifications if n not in self.notifications]
            if unknown:
                raise ValueError(f"service {svc.title} references unknown notifications: {unknown}")
        unknown = [n for n in self.admin_notifications if n not in self.notifications]
        if unknown:
            raise ValueError(f"admin_notifications references unknown notifications: {unknown}")
        return self


def parse_config(data: Any) -> AppConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("configuration must be a JSON object")
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e


def load_config(path: str | Path) -> AppConfig:
    """Read and validate the registration file."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read configuration {path}: {e}") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"configuration {path} is not valid JSON: {e}") from e
    return parse_config(data)
