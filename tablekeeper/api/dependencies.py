"""FastAPI dependencies for TableKeeper."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from tablekeeper.config import get_settings
from tablekeeper.models.base import async_session_factory
from tablekeeper.services.automation import TableAutomation


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


def get_automation(request: Request) -> TableAutomation:
    """Get the table automation service created at startup."""
    return request.app.state.automation
