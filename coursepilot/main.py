"""
Application entry point and resource lifecycle.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from coursepilot.config import settings
from coursepilot.db.pool import db_pool
from coursepilot.infrastructure.observability.logging import get_logger, setup_logging
from coursepilot.jobs.background import background_queue
from coursepilot.routes import chat, dashboard, health, recordings, session
from coursepilot.services.canvas.session import session_registry
from coursepilot.services.vector_store import close_vector_store

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        if settings.database_configured():
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")
        else:
            logger.warning("SUPABASE_DB_URL not set; conversations and recordings kept in memory")

        await background_queue.start()
        startup_tasks.append("background_queue")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

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

    # Drain background work first; it may still write to the database
    try:
        await background_queue.stop()
    except Exception as e:
        logger.error("Error stopping background queue", error=str(e))
        shutdown_errors.append(f"Background queue: {e}")

    try:
        await session_registry.close_all()
    except Exception as e:
        logger.error("Error closing Canvas sessions", error=str(e))
        shutdown_errors.append(f"Canvas sessions: {e}")

    try:
        await close_vector_store()
    except Exception as e:
        logger.error("Error closing vector store", error=str(e))
        shutdown_errors.append(f"Vector store: {e}")

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="CoursePilot",
    description="Canvas LMS dashboard aggregation and course assistant",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(session.router)
app.include_router(dashboard.router)
app.include_router(chat.router)
app.include_router(recordings.router)


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
