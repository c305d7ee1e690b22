"""Config Loader - Loads and saves application settings.

Settings files are YAML (JSON is valid YAML, so files written by
save_settings load back unchanged). Strings may contain ${ENV_VAR}
placeholders, which keeps secrets such as the signing key out of the file.

Loading is forgiving about older layouts: keys written by earlier versions
are renamed, unknown keys are dropped, and missing keys take their defaults.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from postlite.models import AppSettings

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading fails."""


# Flat camelCase keys used by earlier settings files.
_LEGACY_KEYS = {
    "fetchMode": "fetch_mode",
    "fetchCredentials": "fetch_credentials",
    "globalHeaders": "global_headers",
}
_LEGACY_AUTH_KEYS = {
    "cloudDocsMode": "enabled",
    "cloudDocsAppId": "app_id",
    "cloudDocsSecureKey": "secret_key",
}

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_settings(config_path: Path) -> AppSettings:
    """Load settings from YAML/JSON with ${ENV_VAR} substitution.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return AppSettings.model_validate(migrate_settings(raw_config))
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def load_settings_or_default(config_path: Path | None) -> AppSettings:
    """Load settings if a file exists, falling back to defaults with a warning."""
    if config_path is None or not config_path.exists():
        return AppSettings()
    try:
        return load_settings(config_path)
    except ConfigError as e:
        logger.warning("Ignoring settings file %s: %s", config_path, e)
        return AppSettings()


def save_settings(config_path: Path, settings: AppSettings) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(settings.model_dump(mode="json"), f, indent=2)


def migrate_settings(raw: dict[str, Any]) -> dict[str, Any]:
    """Bring a settings mapping from any earlier layout to the current one.

    Merges over defaults: unknown keys are dropped (with a warning), and a
    missing or null global_headers list is restored to the default.
    """
    migrated: dict[str, Any] = {}
    auth: dict[str, Any] = dict(raw.get("auth") or {})

    for key, value in raw.items():
        if key in _LEGACY_AUTH_KEYS:
            auth.setdefault(_LEGACY_AUTH_KEYS[key], value)
        elif key == "auth":
            continue
        else:
            migrated[_LEGACY_KEYS.get(key, key)] = value

    if auth:
        migrated["auth"] = auth

    known = set(AppSettings.model_fields)
    unknown = sorted(set(migrated) - known)
    if unknown:
        logger.warning("Dropping unknown settings keys: %s", ", ".join(unknown))
    migrated = {k: v for k, v in migrated.items() if k in known}

    if migrated.get("global_headers") is None:
        migrated.pop("global_headers", None)
    else:
        migrated["global_headers"] = [
            _migrate_entry(entry) for entry in migrated["global_headers"]
        ]
    return migrated


def _migrate_entry(entry: Any) -> Any:
    """Fill in ids missing from hand-written header rows."""
    if isinstance(entry, dict) and not entry.get("id"):
        return {k: v for k, v in entry.items() if k != "id"}
    return entry


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_PATTERN.sub(replacer, s)
