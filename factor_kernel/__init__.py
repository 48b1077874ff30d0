"""
Factor Kernel

Shared infrastructure for the factor operation engine:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- SQLAlchemy declarative base, engine and immutability listeners
- Locked sequence counters and a hash-chained audit trail
- Idempotency-keyed postings and compare-and-swap status transitions
"""

__version__ = "0.1.0"
