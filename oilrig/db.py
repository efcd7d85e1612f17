from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from oilrig.create_postgres_engine import create_postgres_engine
from oilrig.create_sqlite_engine import create_sqlite_engine
from oilrig.load_secrets import host


def create_engine() -> AsyncEngine:
    # PostgreSQL when a DB host is configured, SQLite otherwise.
    if host:
        return create_postgres_engine()
    return create_sqlite_engine()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Centralized session factory to avoid creating it in router modules.
    return async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        expire_on_commit=False,
        bind=engine,
    )
