"""
factor_config -- engine settings loaded from YAML.

Responsibility:
    Parses the settings document (database, logging, packaging, factor
    module tunables) into frozen dataclasses, applies the
    ``FACTOR_DATABASE_URL`` / ``FACTOR_LOG_LEVEL`` environment overrides and
    bridges the result into runtime objects.

Architecture position:
    Configuration -- sits above ``factor_kernel`` and ``factor_modules``.
    The kernel MUST NEVER import from ``factor_config``.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``ValueError`` -- unknown section or key.
"""

from factor_config.bridges import bootstrap, build_factor_config, build_packager
from factor_config.loader import compute_checksum, load_settings, parse_settings
from factor_config.schema import (
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    PackagingSettings,
)

__all__ = [
    "DatabaseSettings",
    "EngineSettings",
    "LoggingSettings",
    "PackagingSettings",
    "bootstrap",
    "build_factor_config",
    "build_packager",
    "compute_checksum",
    "load_settings",
    "parse_settings",
]
