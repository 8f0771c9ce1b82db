"""
Database Service - engine, sessions and transactions.

Purpose
-------
Own the single AsyncEngine of the process and hand out sessions. Services
open writes through `get_transaction()` and reads through `get_session()`;
nothing else creates sessions.

Transaction Model
-----------------
- `get_transaction()` commits when the block exits normally and rolls back
  on any exception, which is re-raised unchanged.
- Service code never calls ``session.commit()`` itself.
- Rows that must not change underneath a decision are loaded with
  ``with_for_update=True`` (see `get_locked_entity`).
- Retrying transient failures belongs to `DatabaseRetryPolicy`.

Dialects
--------
PostgreSQL (production) gets an ``AsyncAdaptedQueuePool`` sized from Config
and a per-transaction ``statement_timeout``.

SQLite (tests, local runs) gets ``NullPool``, so each session owns its own
connection and concurrent transactions contend on the file lock the way
separate clients would. Every SQLite transaction opens with BEGIN IMMEDIATE:
a transaction that reads before it writes already holds the write lock.

Usage
-----
>>> async with DatabaseService.get_transaction() as session:
...     row = await DatabaseService.get_locked_entity(session, PlayerPerk, row_id)
...     row.is_equipped = True
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Type, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from perkboost.core.config.config import Config
from perkboost.core.database.base import Base
from perkboost.core.exceptions import DatabaseError
from perkboost.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseInitializationError(RuntimeError):
    """The engine could not be configured."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `DatabaseService.initialize()`."""


@dataclass(frozen=True)
class _EngineSettings:
    url: str
    statement_timeout_ms: int

    @property
    def scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"

    @property
    def is_postgres(self) -> bool:
        return self.scheme.startswith("postgresql")

    @property
    def is_sqlite(self) -> bool:
        return self.scheme.startswith("sqlite")


class DatabaseService:
    """
    Class-level holder of the engine and session factory.

    Lifecycle: `initialize()`, then `create_schema()` for tests and local
    runs, then sessions and transactions, then `shutdown()`.
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _settings: Optional[_EngineSettings] = None
    _init_lock: Optional[asyncio.Lock] = None

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        if cls._init_lock is None:
            cls._init_lock = asyncio.Lock()
        return cls._init_lock

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @staticmethod
    def _engine_kwargs(settings: _EngineSettings) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"echo": Config.DATABASE_ECHO}
        if settings.is_sqlite or Config.is_testing():
            kwargs["poolclass"] = NullPool
        else:
            kwargs.update(
                poolclass=AsyncAdaptedQueuePool,
                pool_size=Config.DATABASE_POOL_SIZE,
                max_overflow=Config.DATABASE_MAX_OVERFLOW,
                pool_recycle=Config.DATABASE_POOL_RECYCLE,
                pool_timeout=Config.DATABASE_POOL_TIMEOUT,
                pool_pre_ping=True,
            )
        if settings.is_sqlite:
            # Seconds a writer waits on the file lock before "database is locked".
            kwargs["connect_args"] = {"timeout": Config.DATABASE_POOL_TIMEOUT}
        return kwargs

    @staticmethod
    def _use_immediate_transactions(engine: AsyncEngine) -> None:
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            # SQLAlchemy, not the sqlite3 module, decides when BEGIN is sent.
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @classmethod
    async def initialize(cls, database_url: Optional[str] = None) -> None:
        """
        Create the engine and session factory; a no-op when already initialized.

        ``database_url`` overrides ``Config.DATABASE_URL``.

        Raises
        ------
        DatabaseInitializationError
            If no URL is configured or the engine cannot be created.
        """
        async with cls._lock():
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            url = database_url or Config.DATABASE_URL
            if not url or not isinstance(url, str):
                raise DatabaseInitializationError(
                    "DATABASE_URL must be configured as a non-empty string"
                )
            settings = _EngineSettings(url, Config.DATABASE_STATEMENT_TIMEOUT_MS)

            try:
                engine = create_async_engine(url, **cls._engine_kwargs(settings))
            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"url_scheme": settings.scheme, "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            if settings.is_sqlite:
                cls._use_immediate_transactions(engine)

            cls._engine = engine
            cls._settings = settings
            cls._session_factory = async_sessionmaker(
                bind=engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info(
                "DatabaseService initialized",
                extra={"url_scheme": settings.scheme, "pool_class": type(engine.pool).__name__},
            )

    @classmethod
    async def create_schema(cls) -> None:
        """
        Create every table on `Base.metadata` that does not exist yet.

        Raises
        ------
        DatabaseError
            If DDL execution fails.
        """
        engine = cls._require_engine()

        # Model modules register their tables on import.
        import perkboost.database.models  # noqa: F401

        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            logger.error("Schema creation failed", exc_info=True)
            raise DatabaseError("create_schema", exc) from exc

        logger.info("Database schema ensured", extra={"tables": sorted(Base.metadata.tables)})

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. Safe to call repeatedly."""
        async with cls._lock():
            engine = cls._engine
            if engine is None:
                logger.debug("DatabaseService not initialized; nothing to shut down")
                return

            cls._engine = None
            cls._session_factory = None
            cls._settings = None
            await engine.dispose()
            logger.info("DatabaseService shut down")

    @classmethod
    async def health_check(cls) -> bool:
        """``SELECT 1`` liveness check; never raises."""
        if cls._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except DBAPIError as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

        logger.debug(
            "Database health check passed",
            extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
        )
        return True

    # ========================================================================
    # Sessions & Transactions
    # ========================================================================

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            logger.error("DatabaseService used before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )
        return cls._engine

    @classmethod
    def _open(cls) -> tuple[AsyncSession, _EngineSettings]:
        cls._require_engine()
        assert cls._session_factory is not None and cls._settings is not None
        return cls._session_factory(), cls._settings

    @staticmethod
    async def _apply_statement_timeout(session: AsyncSession, settings: _EngineSettings) -> None:
        if settings.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {int(settings.statement_timeout_ms)}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session for reads; nothing is committed.

        Raises
        ------
        DatabaseNotInitializedError
            If `initialize()` has not run.
        """
        session, settings = cls._open()
        async with session:
            await cls._apply_statement_timeout(session, settings)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Atomic unit of work: commit on normal exit, rollback and re-raise otherwise.

        Raises
        ------
        DatabaseNotInitializedError
            If `initialize()` has not run.
        SQLAlchemyError
            Driver and ORM failures propagate unchanged after the rollback.
        """
        session, settings = cls._open()
        start = time.perf_counter()

        async with session:
            try:
                await cls._apply_statement_timeout(session, settings)
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                # Domain rejections (ownership, validation) are expected traffic.
                log = logger.error if isinstance(exc, SQLAlchemyError) else logger.debug
                log(
                    "Transaction rolled back",
                    extra={
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise

            logger.debug(
                "Transaction committed",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )

    @classmethod
    async def get_locked_entity(
        cls,
        session: AsyncSession,
        model: Type[T],
        primary_key: Any,
    ) -> Optional[T]:
        """
        ``SELECT ... FOR UPDATE`` by primary key inside `get_transaction()`.

        SQLite has no row locks; the transaction's write lock serializes instead.
        """
        return await session.get(model, primary_key, with_for_update=True)
