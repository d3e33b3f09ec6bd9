"""Database engine, session factory and schema management."""

import logging
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    For file-backed SQLite URLs the parent directory is created if missing.

    Args:
        database_url: SQLAlchemy async URL (e.g. ``sqlite+aiosqlite:///./data/aichat.db``)
        echo: Log emitted SQL

    Returns:
        AsyncEngine instance
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(database_url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create missing tables and upgrade older schemas in place."""
    # Import models so they are registered on Base.metadata
    from aichat.models.database import Credential  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(_upgrade_schema)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()


def _upgrade_schema(conn: Connection) -> None:
    """Add the provider column to auth_keys tables created before multi-provider support."""
    columns = {column["name"] for column in inspect(conn).get_columns("auth_keys")}
    if "provider" in columns:
        return

    logger.info("Upgrading auth_keys schema: adding provider column")
    conn.execute(
        text("ALTER TABLE auth_keys ADD COLUMN provider VARCHAR(50) NOT NULL DEFAULT 'openrouter'")
    )
    conn.execute(
        text("CREATE UNIQUE INDEX IF NOT EXISTS ix_auth_keys_provider ON auth_keys (provider)")
    )
