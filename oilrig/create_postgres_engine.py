from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from oilrig.load_secrets import user, password, host, port, db_name

POSTGRES_DATABASE_URL = (
    f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
)


def create_postgres_engine(url: str = POSTGRES_DATABASE_URL) -> AsyncEngine:
    return create_async_engine(url, pool_size=20, max_overflow=20)
