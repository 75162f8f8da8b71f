# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import ControllerSettings

log = logging.getLogger("machinegate")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. MACHINEGATE_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the settings file
    """
    env = os.environ.get("MACHINEGATE_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("MACHINEGATE_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def load_settings(path: str | Path | None = None) -> ControllerSettings:
    """
    Load and validate controller settings.

    With no path, MACHINEGATE_CONFIG is consulted; with neither, defaults are
    returned. ``${ENV_VAR}`` placeholders are expanded, and a secrets.yaml
    overlay (see _find_secrets_file) is deep-merged before validation, so the
    CA checksum or server URL can live outside the main file.
    """
    if path is None:
        path = os.environ.get("MACHINEGATE_CONFIG")
    if not path:
        log.debug("No settings file given, using defaults")
        return ControllerSettings()

    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))

    return ControllerSettings.model_validate(data)
