from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

CATALOG_ENV_VAR = "PKGREGISTRY_CATALOG_PATH"
ARTIFACT_ROOT_ENV_VAR = "PKGREGISTRY_ARTIFACT_ROOT"
DATA_HOME_ENV_VAR = "XDG_DATA_HOME"
APP_DIR_NAME = "pkgregistry"


class RegistryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    catalog_location: str
    artifact_root: str

    @field_validator("catalog_location", "artifact_root")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("registry locations must not be empty")
        return normalized

    @field_validator("catalog_location")
    @classmethod
    def validate_catalog_location(cls, value: str) -> str:
        if value == ":memory:":
            raise ValueError("catalog_location must be a file path, not :memory:")
        return value

    @property
    def catalog_path(self) -> Path:
        return Path(self.catalog_location).expanduser()

    @property
    def artifact_path(self) -> Path:
        return Path(self.artifact_root).expanduser()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RegistryConfig:
        env = os.environ if environ is None else environ
        app_dir = default_data_dir(env)
        return cls(
            catalog_location=env.get(CATALOG_ENV_VAR) or str(app_dir / "index.sqlite3"),
            artifact_root=env.get(ARTIFACT_ROOT_ENV_VAR) or str(app_dir / "packages"),
        )


def default_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    data_home = env.get(DATA_HOME_ENV_VAR, "").strip()
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / APP_DIR_NAME


def load_config(path: str | Path) -> RegistryConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return RegistryConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ValueError(f"Configuration is neither JSON nor YAML: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
