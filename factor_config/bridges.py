"""
Settings bridges (``factor_config.bridges``).

Translate ``EngineSettings`` into the runtime objects the kernel and the
factor module consume.  The kernel never imports ``factor_config``; these
functions are the only crossing point.
"""

from __future__ import annotations

from dataclasses import fields
from decimal import Decimal

from sqlalchemy.engine import Engine

from factor_config.schema import EngineSettings
from factor_kernel.db.engine import init_engine_from_url
from factor_kernel.db.immutability import register_immutability_listeners
from factor_kernel.logging_config import configure_logging, get_logger
from factor_modules.factor.config import FactorConfig
from factor_modules.factor.packager import PathTransmissionPackager
from factor_modules.receivables.models import InstallmentStatus

logger = get_logger("config.bridges")


def build_factor_config(settings: EngineSettings) -> FactorConfig:
    """FactorConfig with the ``factor`` section applied over the defaults."""
    known = {f.name for f in fields(FactorConfig)}
    overrides = dict(settings.factor)
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown keys in settings section 'factor': {unknown}")

    if "max_rate_percent" in overrides:
        overrides["max_rate_percent"] = Decimal(str(overrides["max_rate_percent"]))
    if "eligible_installment_statuses" in overrides:
        overrides["eligible_installment_statuses"] = tuple(
            InstallmentStatus(s) for s in overrides["eligible_installment_statuses"]
        )
    return FactorConfig(**overrides)


def build_packager(settings: EngineSettings) -> PathTransmissionPackager:
    return PathTransmissionPackager.from_settings(settings.packaging)


def bootstrap(settings: EngineSettings) -> Engine:
    """Configure logging, the module-level engine and immutability listeners."""
    configure_logging(level=settings.logging.level.upper())
    db = settings.database
    engine = init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    register_immutability_listeners()
    logger.info("factor_engine_bootstrapped", extra={
        "settings_checksum": settings.checksum,
        "dialect": engine.dialect.name,
    })
    return engine
