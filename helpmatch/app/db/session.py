"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from helpmatch.app.core.config import settings


def _engine_options(database_url: str) -> dict:
    # Pool sizing only applies to server databases
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


WRITE_LOCK_OPTION = "helpmatch_write_lock"


def use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make SQLite write transactions take the write lock up front.

    SQLite locks the whole database file, so two deferred transactions that
    both read and then write can deadlock instead of queueing. Transactions
    opened through ``begin_write`` issue BEGIN IMMEDIATE, so a second writer
    waits on the busy timeout until the first commits and its conditional
    UPDATEs then see the committed state. Everything else gets a plain
    deferred BEGIN and reads alongside a writer.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


async def begin_write(session: AsyncSession) -> None:
    """
    Open the session's transaction as a write transaction.

    Must be the first statement inside ``session.begin()``. Only SQLite engines
    set up by ``use_immediate_transactions`` act on it.
    """
    await session.connection(execution_options={WRITE_LOCK_OPTION: True})


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    future=True,
    **_engine_options(settings.database_url),
)

if settings.database_url.startswith("sqlite"):
    use_immediate_transactions(engine)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


def get_session_factory() -> async_sessionmaker:
    """
    FastAPI dependency for the session factory.

    The matching services open one session per operation, so they take the
    factory rather than a request-scoped session.
    """
    return AsyncSessionLocal
