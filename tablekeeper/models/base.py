"""Database engine, sessions and the declarative base for TableKeeper models.

The API process shares one engine. Celery tasks run each job on a fresh
event loop, and asyncpg connections cannot cross loops, so every task
builds and disposes of its own engine through ``get_task_session``.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, MetaData, func
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tablekeeper.config import get_settings

settings = get_settings()

# Deterministic constraint names keep migrations and create_all in step
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug}
    # SQLite (tests, local runs) has no server-side pool to size
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine bound to the current event loop."""
    url = database_url or settings.database_url
    return create_async_engine(url, **_engine_options(url))


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the SQL stores."""
    return async_sessionmaker(
        engine if engine is not None else get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Shared by the API process and its worker pool
engine = get_engine()
async_session_factory = get_session_factory(engine)


@asynccontextmanager
async def get_task_session(database_url: str | None = None):
    """Session on a task-local engine, disposed of when the task is done."""
    task_engine = get_engine(database_url)
    try:
        async with get_session_factory(task_engine)() as session:
            yield session
    finally:
        await task_engine.dispose()


class Base(DeclarativeBase):
    """Declarative base for all TableKeeper tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class TimestampMixin:
    """Row creation and last-update times, maintained by the database."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
