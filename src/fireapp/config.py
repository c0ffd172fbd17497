"""Configuration loading.

Settings are layered, lowest precedence first:

1. dataclass defaults
2. an optional YAML file, either flat or nested under a ``fireapp:`` key::

       fireapp:
         backend: rest
         database_url: https://my-app.firebaseio.com
         timeout: 5

3. environment variables
4. keyword overrides passed to :func:`load_config`

Environment variables:
    FIREAPP_BACKEND       – backend environment name (``local`` / ``rest``)
    FIREAPP_DATABASE_URL  – base URL of the REST database
    FIREAPP_AUTH_TOKEN    – auth token / database secret for REST calls
    FIREAPP_DB_PATH       – DuckDB file used by the local backend
    FIREAPP_PERSISTENCE   – ``1``/``true`` enables local persistence
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from fireapp.errors import ConfigError

_ENV_VARS = {
    "backend": "FIREAPP_BACKEND",
    "database_url": "FIREAPP_DATABASE_URL",
    "auth_token": "FIREAPP_AUTH_TOKEN",
    "db_path": "FIREAPP_DB_PATH",
    "persistence": "FIREAPP_PERSISTENCE",
}

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class FireappConfig:
    backend: str | None = None
    database_url: str = ""
    auth_token: str = ""
    db_path: str = "fireapp.duckdb"
    persistence: bool = False
    timeout: float = 10.0
    max_transaction_retries: int = 25
    reconnect_delay: float = 1.0


def _coerce(name: str, value: Any) -> Any:
    if name == "persistence" and isinstance(value, str):
        return value.strip().lower() in _TRUE
    if name in {"timeout", "reconnect_delay"}:
        return float(value)
    if name == "max_transaction_retries":
        return int(value)
    if name == "backend" and value is not None:
        return str(value).strip().lower() or None
    return value


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    section = data.get("fireapp", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'fireapp' section in {path} must be a mapping")
    return section


def load_config(path: Path | str | None = None, **overrides: Any) -> FireappConfig:
    """Build a :class:`FireappConfig` from file, environment and *overrides*."""
    known = {f.name for f in fields(FireappConfig)}
    values: dict[str, Any] = {}

    if path is not None:
        for key, value in _read_yaml(Path(path)).items():
            if key not in known:
                raise ConfigError(f"Unknown configuration key '{key}'")
            values[key] = value

    for name, var in _ENV_VARS.items():
        env = os.getenv(var)
        if env:
            values[name] = env

    for key, value in overrides.items():
        if key not in known:
            raise ConfigError(f"Unknown configuration key '{key}'")
        if value is not None:
            values[key] = value

    try:
        return replace(FireappConfig(), **{k: _coerce(k, v) for k, v in values.items()})
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc
