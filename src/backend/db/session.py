"""
Database engine and session management.

The ledger lives in PostgreSQL (asyncpg) in production. Every engine
operation runs inside its own short-lived store transaction obtained from
``store_transaction``; acquiring that transaction is bounded by
``STORE_TIMEOUT_SECONDS`` and connectivity or lock-wait failures surface as
``StoreUnavailable`` so callers can retry with backoff.
"""

import asyncio
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncGenerator, Iterator

import structlog
from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from core.exceptions import StoreUnavailable
from db.base import Base

logger = structlog.get_logger(__name__)

# PostgreSQL SQLSTATEs that mean "try again later" rather than "bad request"
TRANSIENT_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
    "57014",  # query_canceled (statement_timeout)
    "57P01",  # admin_shutdown
}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine with bounded acquisition timeouts."""
    timeout = settings.STORE_TIMEOUT_SECONDS

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=False,
            # busy timeout: how long a writer waits for the database lock
            connect_args={"timeout": timeout},
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    lock_timeout_ms = str(int(timeout * 1000))
    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=timeout,
        pool_pre_ping=True,
        connect_args={
            "timeout": timeout,
            "server_settings": {
                "lock_timeout": lock_timeout_ms,
                "idle_in_transaction_session_timeout": str(int(timeout * 4000)),
            },
        },
    )


def get_engine() -> AsyncEngine:
    """Get or lazily create the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(settings.DATABASE_URL)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or lazily create the session factory bound to the engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db(create_tables: bool = False) -> None:
    """Initialize the engine and optionally create missing tables."""
    import models  # noqa: F401  (registers all tables on Base.metadata)

    engine = get_engine()
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_ensured")


async def close_db() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database_engine_disposed")
    _engine = None
    _session_factory = None


def is_transient_store_error(exc: BaseException) -> bool:
    """Whether a database error means the store is (temporarily) unavailable."""
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (PoolTimeoutError, OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return sqlstate in TRANSIENT_SQLSTATES
    return False


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Re-raise transient database failures as StoreUnavailable."""
    try:
        yield
    except asyncio.TimeoutError as exc:
        logger.warning("store_timeout", operation=operation)
        raise StoreUnavailable(f"Store did not respond in time during {operation}") from exc
    except DBAPIError as exc:
        if not is_transient_store_error(exc):
            raise
        logger.warning("store_unavailable", operation=operation, error_type=type(exc).__name__)
        raise StoreUnavailable(f"Store unavailable during {operation}") from exc
    except PoolTimeoutError as exc:
        logger.warning("store_pool_exhausted", operation=operation)
        raise StoreUnavailable(f"No store connection available for {operation}") from exc


@asynccontextmanager
async def store_transaction(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    operation: str = "transaction",
) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session and a single transaction around it.

    Commits when the block exits normally and rolls back on any exception,
    so a failed block leaves no rows behind. Acquiring the connection is
    bounded by STORE_TIMEOUT_SECONDS.
    """
    factory = session_factory or get_session_factory()
    with translate_store_errors(operation):
        async with factory() as session:
            async with session.begin():
                await asyncio.wait_for(session.connection(), timeout=settings.STORE_TIMEOUT_SECONDS)
                yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a read-mostly session for request-scoped lookups."""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory_dependency() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the session factory (overridden in tests)."""
    return get_session_factory()
