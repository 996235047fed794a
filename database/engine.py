import logging

from sqlalchemy import event, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from core.config import settings
from core.exceptions import NotFound, TransactionNotConfirmed

DATABASE_URL = settings.database_url

# log for debugging purposes
logger = logging.getLogger("database_engine")
logger.info(f"Connecting to database at {DATABASE_URL.split('@')[-1]}")


def _engine_options(url: str) -> dict:
    """Pool options per backend; SQLite files get a fresh connection per session."""
    if url.startswith("sqlite"):
        return {"poolclass": NullPool, "connect_args": {"timeout": 30}}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


db_engine = create_async_engine(
    DATABASE_URL, echo=settings.database_echo, **_engine_options(DATABASE_URL)
)


if DATABASE_URL.startswith("sqlite"):
    # The driver defers BEGIN until the first write, which breaks SAVEPOINT
    # and lets two writers deadlock on lock upgrade. Take the write lock up
    # front instead so transactions serialize.

    @event.listens_for(db_engine.sync_engine, "connect")
    def _sqlite_disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine.sync_engine, "begin")
    def _sqlite_begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# Create async session maker to be used throughout the application
AsyncSessionLocal = async_sessionmaker(
    db_engine, class_=AsyncSession, expire_on_commit=False
)


# Base class for declarative models
class Base(DeclarativeBase):
    pass


# Dependency to get DB session
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def commit_or_fail(session: AsyncSession, operation: str) -> None:
    """
    Commit, reporting an unconfirmed commit as TransactionNotConfirmed.

    Integrity errors propagate unchanged so callers can map them to the
    conflict they represent. Nothing is retried.
    """
    try:
        await session.commit()
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Commit failed during {operation}: {e}")
        await session.rollback()
        raise TransactionNotConfirmed(
            f"Could not confirm {operation}; treat it as not applied",
            operation=operation,
        ) from e


async def get_scoped(session: AsyncSession, model, record_id: int, tenant_id: str):
    """Load a row by id inside a tenant, raising NotFound otherwise."""
    result = await session.execute(
        select(model).where(model.id == record_id, model.tenant_id == tenant_id)
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFound(model.__name__, record_id)
    return record


# Function to initialize the database (create tables)
async def init_db():
    import database.models  # noqa: F401  registers every table on Base.metadata

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Function to close database connections
async def close_db():
    """Close database engine and connections."""
    await db_engine.dispose()
