import pathlib

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from oilrig.load_secrets import sqlite_path

file_path = pathlib.Path(__file__).parents[1]
file_path /= "./oilrig.sqlite3"


def create_sqlite_engine(path=None) -> AsyncEngine:
    """Local / test database. SQLite has no row locks; the per-player lock serializes writers."""
    target = path or sqlite_path or file_path
    sqlite_url = f"sqlite+aiosqlite:///{target}"
    return create_async_engine(url=sqlite_url, echo=False)
