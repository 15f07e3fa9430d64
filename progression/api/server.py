"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from progression.api.middleware import setup_cors, setup_rate_limiting
from progression.api.routes import router
from progression.config import DATABASE_URL, LOG_LEVEL, STORAGE_BACKEND, validate_config
from progression.db.connection import Database
from progression.db.store import ProgressStore
from progression.exceptions import (
    ConfigurationError,
    ProgressionError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)
from progression.gamification.catalog import load_catalog
from progression.services.container import init_container, reset_container
from progression.services.notifications import create_notifier

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


async def build_store(backend: str = STORAGE_BACKEND) -> Tuple[ProgressStore, Optional[Database]]:
    """Create the configured Progress Store (and its pool for postgres)"""
    if backend == "postgres":
        from progression.db.postgres_store import PostgresProgressStore
        from progression.db.schema import init_schema

        db = Database(DATABASE_URL)
        await db.init_pool()
        await init_schema(db)
        return PostgresProgressStore(db), db

    from progression.db.memory_store import InMemoryProgressStore
    return InMemoryProgressStore(), None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting progression API server...")
    try:
        validate_config()
    except ValueError as e:
        raise ConfigurationError(message=str(e), cause=e)

    store, db = await build_store()
    catalog = load_catalog()
    container = init_container(store=store, catalog=catalog, notifier=create_notifier())
    logger.info(f"Progress store ready ({STORAGE_BACKEND})")

    # Drain rewards left over from a previous run
    totals = await container.dispatcher.retry_all()
    if totals["users"]:
        logger.info(f"Recovered reward backlog at startup: {totals}")

    yield

    # Shutdown
    logger.info("Shutting down progression API server...")
    reset_container()
    if db is not None:
        await db.close_pool()
        logger.info("Database pool closed")


def _status_for(exc: ProgressionError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, StorageError) and exc.transient:
        return 503
    return 500


def create_api_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Progression Engine API",
        description="Achievements, streaks, and rewards driven by user activity events",
        version="1.0.0",
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)

    # Include routes
    app.include_router(router)

    @app.exception_handler(ProgressionError)
    async def progression_exception_handler(request: Request, exc: ProgressionError):
        return JSONResponse(status_code=_status_for(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app
