"""
Settings Loader (``factor_config.loader``).

Responsibility
--------------
Reads the YAML settings file and parses it into the frozen
``factor_config.schema`` dataclasses, then applies environment overrides.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on the kernel
or modules; ``factor_config.bridges`` translates settings into runtime
objects.

Invariants enforced
-------------------
* Unknown keys inside a section raise ``ValueError``; there are no silent
  typos.
* ``compute_checksum`` is computed over the file content before environment
  overrides, so the checksum identifies the reviewed document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from factor_config.schema import (
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    PackagingSettings,
)

ENV_DATABASE_URL = "FACTOR_DATABASE_URL"
ENV_LOG_LEVEL = "FACTOR_LOG_LEVEL"

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = {
    "database": DatabaseSettings,
    "logging": LoggingSettings,
    "packaging": PackagingSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(name: str, cls: type, data: Any):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Settings section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in settings section '{name}': {unknown}")
    return cls(**data)


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse an already-loaded settings document."""
    unknown = sorted(set(data) - set(_SECTIONS) - {"factor"})
    if unknown:
        raise ValueError(f"Unknown settings sections: {unknown}")

    factor = data.get("factor") or {}
    if not isinstance(factor, dict):
        raise ValueError("Settings section 'factor' must be a mapping")

    return EngineSettings(
        database=_parse_section("database", DatabaseSettings, data.get("database")),
        logging=_parse_section("logging", LoggingSettings, data.get("logging")),
        packaging=_parse_section("packaging", PackagingSettings, data.get("packaging")),
        factor=dict(factor),
        checksum=compute_checksum(data),
    )


def apply_env_overrides(
    settings: EngineSettings,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Apply ``FACTOR_DATABASE_URL`` and ``FACTOR_LOG_LEVEL`` when set."""
    env = os.environ if environ is None else environ

    database_url = env.get(ENV_DATABASE_URL)
    if database_url:
        settings = replace(settings, database=replace(settings.database, url=database_url))

    log_level = env.get(ENV_LOG_LEVEL)
    if log_level:
        settings = replace(
            settings, logging=replace(settings.logging, level=log_level.upper())
        )
    return settings


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Load settings from ``path`` (the packaged defaults when omitted) and
    apply environment overrides.
    """
    data = load_yaml_file(Path(path) if path is not None else DEFAULT_SETTINGS_PATH)
    return apply_env_overrides(parse_settings(data), environ)
