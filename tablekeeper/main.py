"""TableKeeper FastAPI application.

Keeps league tables consistent with match results: queued recalculation,
snapshots and rollback, and an operator API over both.
"""

from contextlib import asynccontextmanager

import redis.asyncio as redis
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tablekeeper.api.routes import admin, health, tables
from tablekeeper.config import get_automation_config, get_settings
from tablekeeper.errors import TableKeeperError
from tablekeeper.models.base import async_session_factory
from tablekeeper.services.automation import TableAutomation

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_tablekeeper", version="0.1.0")
    config = get_automation_config()
    redis_client = redis.from_url(settings.redis_url) if config.cache_enabled else None

    automation = TableAutomation.from_session_factory(
        config, async_session_factory, redis_client=redis_client
    )
    app.state.automation = automation
    automation.start()

    yield

    await automation.stop(timeout=config.queue.job_timeout)
    if redis_client is not None:
        await redis_client.aclose()
    logger.info("shutting_down_tablekeeper")


# Create FastAPI application
app = FastAPI(
    title="TableKeeper",
    description="League table recalculation, snapshots and rollback",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(tables.router)
app.include_router(admin.router)


# Error handlers
@app.exception_handler(TableKeeperError)
async def tablekeeper_error_handler(request: Request, exc: TableKeeperError):
    """Render service errors with their operator code."""
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "request_failed",
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        code=exc.code,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
