# savethebeat/main.py
"""
FastAPI application: Slack events webhook, Spotify account linking and
health probes, with database pool, Redis and mention worker lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from savethebeat.config import settings
from savethebeat.db.helpers import DatabaseError
from savethebeat.db.pool import db_pool
from savethebeat.dependencies import build_services
from savethebeat.errors import AppError, app_error_handler
from savethebeat.infrastructure.observability.logging import get_logger, setup_logging
from savethebeat.routes import health, slack_events, spotify_auth
from savethebeat.services.infrastructure.encryption_service import validate_encryption_config
from savethebeat.services.infrastructure.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    if not validate_encryption_config():
        raise RuntimeError("ENCRYPTION_KEY missing or invalid")
    if not settings.slack_configured():
        logger.warning("Slack credentials not configured; webhook requests will be rejected")

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        services = build_services(fast_redis)
        services.worker.start()
        app.state.services = services
        startup_tasks.append("mention_worker")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    # Drain the worker first, it still needs Slack, Spotify and the database
    try:
        await app.state.services.worker.stop()
    except Exception as e:
        logger.error("Error stopping mention worker", error=str(e))
        shutdown_errors.append(f"Worker: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error(
        "Database error",
        path=request.url.path,
        operation=exc.operation,
        error=str(exc),
    )
    return JSONResponse(status_code=503, content={"error": "Storage temporarily unavailable"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)


app = FastAPI(
    title="savethebeat",
    description="Slack bot that saves Spotify tracks shared in threads",
    version="0.1.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.include_router(health.router)
app.include_router(slack_events.router)
app.include_router(spotify_auth.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
