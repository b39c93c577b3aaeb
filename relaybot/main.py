"""
Topic relay bot: FastAPI app with Redis, Telegram client and deferred-task lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger, setup_logging
from relaybot.routes import health, verify, webhook
from relaybot.services.infrastructure.deferred_tasks import deferred_tasks
from relaybot.services.infrastructure.redis_client import fast_redis
from relaybot.services.telegram.client import telegram_client

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        config=settings.config_presence(),
    )

    try:
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # Deferred reactions and batch flushes still need Redis and Telegram
    unfinished = await deferred_tasks.drain(timeout_s=settings.SHUTDOWN_DRAIN_TIMEOUT_S)
    if unfinished:
        shutdown_errors.append(f"Deferred tasks: {unfinished} unfinished")

    try:
        logger.info("Closing Telegram client")
        await telegram_client.close()
    except Exception as e:
        logger.error("Error closing Telegram client", error=str(e))
        shutdown_errors.append(f"Telegram: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Topic Relay Bot",
    description="Relays private chats into per-user forum threads",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhook.router)
app.include_router(verify.router)
app.include_router(health.router)


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

    uvicorn.run(app, host="0.0.0.0", port=8000)
