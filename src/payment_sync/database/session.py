"""Engine and session lifecycle for the payments ledger."""

import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from ..config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

# Process-wide engine, set by init_db()
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    return get_settings().database_url


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Hand BEGIN to SQLAlchemy so begin_nested() emits working SAVEPOINTs on SQLite.

    Transactions start IMMEDIATE: a second writer waits for the first to
    commit instead of failing with "database is locked" on lock upgrade.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Build an engine for the ledger database.

    In-memory SQLite gets a single shared connection. File SQLite and
    every other backend get a regular connection pool. SQLite engines
    also get savepoint support.

    Args:
        database_url: Connection URL. Defaults to the configured DATABASE_URL.
        echo: Log every SQL statement.
        pool_size: Pooled connections kept open (non-SQLite only).
        max_overflow: Extra connections allowed above pool_size (non-SQLite only).

    Returns:
        AsyncEngine instance.
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/").endswith("://"):
            engine = sa_create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = sa_create_async_engine(url, echo=echo)
        _enable_sqlite_savepoints(engine)
        return engine

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory.

    Args:
        engine: Bind a new factory to this engine. When omitted, the factory
            created by init_db() is returned.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    if _session_factory is None:
        raise RuntimeError("Ledger database is not initialized; call init_db() first")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """
    Open the process-wide engine.

    Args:
        database_url: Connection URL. Defaults to the configured DATABASE_URL.
        echo: Log every SQL statement.
        create_tables: Create the ledger tables if they are missing. Deployments
            managed by alembic pass False.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = get_async_session_factory(_engine)
    logger.info(f"Ledger database engine opened ({_engine.url.get_backend_name()})")

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Ledger database engine closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Ledger writes commit on their own inside PaymentRepository, before a
    response is built. The closing commit here only ends whatever read
    transaction is still open.
    """
    async with get_db_context() as session:
        yield session


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Session scope for code running outside a request, such as the CLI.

    Example:
        async with get_db_context() as db:
            payment = await PaymentRepository(db).get_by_order_code("1750004006508")
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
