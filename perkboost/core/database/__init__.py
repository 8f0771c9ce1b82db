"""
Database infrastructure: declarative base, async engine/session lifecycle and
the retry policy for transient store failures.
"""

from perkboost.core.database.base import Base, IdMixin, TimestampMixin, utc_now
from perkboost.core.database.retry_policy import (
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
    translate_database_error,
)
from perkboost.core.database.service import DatabaseService

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "utc_now",
    "DatabaseService",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "translate_database_error",
]
