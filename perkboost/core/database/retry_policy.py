"""
Retrying database work that failed for transient reasons.

`DatabaseRetryPolicy.execute()` re-runs a whole unit of work when the store
reports an ``OperationalError`` (busy file lock, deadlock, serialization
failure, dropped connection). Between attempts it waits
``initial_backoff_ms * 2^(attempt-1)`` capped at ``max_backoff_ms``, plus up
to ``jitter_ms`` of random jitter.

What is never retried:

- domain exceptions (ownership, validation, not found), which propagate as-is
- integrity violations and other non-operational SQLAlchemy errors

Store failures that survive the policy leave it as `ConcurrencyConflictError`
(lock contention) or `PersistenceError` (anything else).

The retried callable must open its own transaction; a transaction that has
already failed cannot be resumed:

>>> async def activate():
...     async with DatabaseService.get_transaction() as session:
...         ...
>>> await policy.execute(activate, operation_name="boost.activate")
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from perkboost.core.config.config import Config
from perkboost.core.exceptions import ConcurrencyConflictError, PersistenceError
from perkboost.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Lowercase fragments of driver messages reporting a lock held elsewhere.
_CONTENTION_MARKERS: Tuple[str, ...] = (
    "database is locked",
    "database is busy",
    "deadlock",
    "could not serialize",
    "lock timeout",
    "lock not available",
    "could not obtain lock",
)


def is_lock_contention(exc: BaseException) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in _CONTENTION_MARKERS)


def translate_database_error(
    operation: str, exc: BaseException, *, attempts: int = 1
) -> Exception:
    """Infrastructure exception for a raw SQLAlchemy error; chain it with ``from exc``."""
    if isinstance(exc, OperationalError) and is_lock_contention(exc):
        return ConcurrencyConflictError(operation, exc, attempts=attempts)
    return PersistenceError(operation, exc)  # type: ignore[arg-type]


@dataclass
class DatabaseRetryConfig:
    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (OperationalError,)

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=Config.DATABASE_RETRY_MAX_ATTEMPTS,
            initial_backoff_ms=Config.DATABASE_RETRY_INITIAL_BACKOFF_MS,
            max_backoff_ms=Config.DATABASE_RETRY_MAX_BACKOFF_MS,
            jitter_ms=Config.DATABASE_RETRY_JITTER_MS,
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after the 1-indexed ``attempt`` failed."""
        delay_ms = min(self.initial_backoff_ms * 2 ** max(attempt - 1, 0), self.max_backoff_ms)
        if self.jitter_ms > 0:
            delay_ms += random.randint(0, self.jitter_ms)
        return delay_ms / 1000.0


class DatabaseRetryPolicy:
    """
    Usage
    -----
    >>> policy = DatabaseRetryPolicy.from_config()
    >>> boost = await policy.execute(
    ...     lambda: activate_once(player_id, game_id, perk_id),
    ...     operation_name="boost.activate",
    ...     context={"player_id": player_id},
    ... )
    """

    def __init__(
        self,
        config: DatabaseRetryConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or the failure is final.

        Raises
        ------
        ConcurrencyConflictError
            Lock contention persisted through every attempt.
        PersistenceError
            Any other SQLAlchemy failure.
        """
        log_extra = {**(context or {}), "db_operation": operation_name}
        max_attempts = self._config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except SQLAlchemyError as exc:
                retriable = isinstance(exc, self._config.retriable_exceptions)
                if not retriable or attempt == max_attempts:
                    logger.error(
                        "Database operation failed permanently",
                        extra={
                            **log_extra,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "retriable": retriable,
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise translate_database_error(
                        operation_name, exc, attempts=attempt
                    ) from exc

                delay = self._config.backoff_seconds(attempt)
                logger.warning(
                    "Transient database failure; retrying",
                    extra={
                        **log_extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "backoff_seconds": delay,
                    },
                )
                await self._sleep(delay)

        raise AssertionError("unreachable: max_attempts must be at least 1")
