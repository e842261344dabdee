# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Optional

from .models import CertControllerConfig

log = logging.getLogger("secretsync")

CONFIG_ENV = "SECRETSYNC_CONFIG"


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
            if value not in (None, "", [], ()):
                base[key] = value
    return base


def _find_config_file(path: Optional[Path]) -> Optional[Path]:
    """
    Locate the config file using this priority:

    1. explicit path (must exist)
    2. SECRETSYNC_CONFIG environment variable
    """
    if path is not None:
        if not path.is_file():
            raise FileNotFoundError(f"config file {path} does not exist")
        return path

    env = os.environ.get(CONFIG_ENV)
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, using defaults", CONFIG_ENV, env)
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping in {path}, got {type(data).__name__}")
    return data


def load_config(
    path: str | Path | None = None,
    overrides: Optional[dict] = None,
) -> CertControllerConfig:
    """
    Load and validate the certcontroller config.

    Values come from the YAML file (if any), then ``overrides`` (CLI flags)
    are deep-merged on top. Empty override values never clobber the file.
    """
    found = _find_config_file(Path(path) if path is not None else None)
    data: dict = {}
    if found:
        log.debug("Loading config from %s", found)
        data = _load_yaml(found)
    else:
        log.debug("No config file, using defaults")

    if overrides:
        _deep_merge(data, overrides)

    return CertControllerConfig.model_validate(data)
