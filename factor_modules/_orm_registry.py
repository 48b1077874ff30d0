"""
Module ORM Registry (``factor_modules._orm_registry``).

Responsibility
--------------
Ensure all SQLAlchemy ORM models are imported so that ``Base.metadata``
contains their table definitions before tables are created, then create
them.  Tests, scripts and ``factor_kernel.db.engine.create_tables`` all go
through ``create_all_tables()``.
"""

from sqlalchemy.engine import Engine


def import_all_orm_models() -> None:
    """Import kernel models and every ``factor_modules.*.orm`` module.

    This function is idempotent -- repeated calls are harmless.
    """
    import factor_kernel.models  # noqa: F401
    import factor_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import factor_modules.factor.orm  # noqa: F401
    import factor_modules.payables.orm  # noqa: F401
    import factor_modules.receivables.orm  # noqa: F401
    # fmt: on


def create_all_tables(engine: Engine) -> None:
    """Create kernel + module tables on ``engine``."""
    from factor_kernel.db.base import Base

    import_all_orm_models()
    Base.metadata.create_all(engine)
