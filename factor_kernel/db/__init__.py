"""Database layer - engine, base classes, types, and immutability listeners."""

from factor_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from factor_kernel.db.engine import create_tables, get_engine, get_session
from factor_kernel.db.types import Money, PayloadHash, Sequence

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Sequence",
    "PayloadHash",
]
