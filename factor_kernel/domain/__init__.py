"""
Pure domain layer.

Value objects with NO dependencies on the ORM, the database or I/O
(SystemClock excepted).
"""

from factor_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from factor_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "Guard",
    "SystemClock",
    "Transition",
    "Workflow",
]
