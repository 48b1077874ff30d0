"""
BaseService -- abstract base for flush-only services.

Responsibility:
    Common constructor and session-handling contract for services that
    write within a caller-owned transaction: they use ``session.flush()``,
    never ``session.commit()``.  The ledger adapters of the factor engine
    extend it so that a settlement effect and its posting marker share one
    unit of work.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from factor_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for flush-only services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
