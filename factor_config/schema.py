"""
Engine settings schema.

Frozen dataclasses parsed from the YAML settings file by
``factor_config.loader``.  Every section has defaults so a partial file
(or no file at all) yields a usable configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Where and how to connect."""

    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingSettings:
    """Level of the ``factor_kernel`` logger hierarchy."""

    level: str = "INFO"


@dataclass(frozen=True)
class PackagingSettings:
    """Layout of the artifact identifiers stored on sent versions."""

    base_path: str = "factor/packages"
    csv_filename: str = "remessa.csv"
    zip_filename: str = "pacote.zip"
    report_filename: str = "relatorio.pdf"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Complete engine configuration.

    ``factor`` holds overrides for ``FactorConfig`` fields by name.
    ``checksum`` identifies the source document (see ``compute_checksum``).
    """

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    packaging: PackagingSettings = field(default_factory=PackagingSettings)
    factor: dict[str, Any] = field(default_factory=dict)
    checksum: str = ""
