import os
from pathlib import Path
from textwrap import dedent

import pydantic
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from loguru import logger

from boardstate_api.errors import StateStoreError
from boardstate_api.errors import handle_broad_exceptions
from boardstate_api.errors import handle_pydantic_validation_errors
from boardstate_api.errors import handle_request_validation_errors
from boardstate_api.errors import handle_state_store_errors
from boardstate_api.jobs.backup_scheduler import BackupScheduler
from boardstate_api.monitoring.logger import configure_logger
from boardstate_api.monitoring.request_context import RequestContextMiddleware
from boardstate_api.routes.routes_backups import ROUTER_BACKUPS
from boardstate_api.routes.routes_entities import ROUTER_ENTITIES
from boardstate_api.routes.routes_health import ROUTER_HEALTH
from boardstate_api.routes.routes_state import ROUTER_STATE
from boardstate_api.settings import Settings
from boardstate_api.store.cache import MemoryStateCache
from boardstate_api.store.document_store import DocumentStore
from boardstate_api.store.pool import StateDBPool
from boardstate_api.store.repository_backup import BackupRepository
from boardstate_api.store.repository_event import EventRepository
from boardstate_api.store.repository_state import DocumentRepository
from boardstate_api.store.restore import RestoreEngine


def _detect_environment() -> str:
    """Detect whether configuration comes from a .env file or the process environment."""
    if Path(".env").exists():
        return "local-env-file"
    return "env-vars"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Configuration is loaded directly from environment variables via pydantic-settings.
    - Deployed: set variables in the process environment
    - Local development: use a .env file in the working directory
    """
    settings = settings or Settings()

    configure_logger(level=os.getenv("LOG_LEVEL", "DEBUG"))

    logger.info(
        "Configuration loaded successfully",
        config_source=_detect_environment(),
        state_db_configured=bool(settings.state_db_connection_string),
        state_cache=settings.enable_state_cache,
        backup_scheduler=settings.enable_backup_scheduler,
    )

    app = FastAPI(
        title=settings.service_name,
        version="v1",
        description=dedent(
            """
        Versioned storage for the shared project board.

        | Resource | Notes |
        | --- | --- |
        | `/api/state` | Compare-and-swap save with idempotent retries |
        | `/api/events` | Ledger replay feed |
        | `/api/backups` | Snapshots and whole-board restore |
        | `/api/entities/{id}` | Project history and project restore |
        """
        ),
        generate_unique_id_function=custom_generate_unique_id,
        swagger_ui_parameters={
            "defaultModelsExpandDepth": -1,  # Hide schemas section
            "defaultModelExpandDepth": 1,  # Keep models collapsed if shown
        },
    )
    app.state.settings = settings

    # Add request context middleware for tracking who/where requests come from
    app.add_middleware(RequestContextMiddleware)
    app.include_router(ROUTER_HEALTH, prefix="/api")
    app.include_router(ROUTER_STATE, prefix="/api")
    app.include_router(ROUTER_BACKUPS, prefix="/api")
    app.include_router(ROUTER_ENTITIES, prefix="/api")

    if settings.state_db_connection_string:
        _register_state_store(app, settings)
    else:
        logger.warning("State store disabled (state_db_connection_string not set) - state routes will answer 503")

    app.add_exception_handler(
        exc_class_or_status_code=StateStoreError,
        handler=handle_state_store_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=RequestValidationError,
        handler=handle_request_validation_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )

    app.middleware("http")(handle_broad_exceptions)

    return app


def _register_state_store(app: FastAPI, settings: Settings) -> None:
    """Wire the pool, repositories, cache, store, restore engine and scheduler onto app.state."""
    state_db_pool = StateDBPool(
        settings.state_db_connection_string,
        min_size=settings.state_db_pool_min_size,
        max_size=settings.state_db_pool_max_size,
        command_timeout=settings.state_db_command_timeout,
    )
    app.state.state_db_pool = state_db_pool

    state_cache = None
    if settings.enable_state_cache and settings.state_cache_ttl_seconds > 0:
        state_cache = MemoryStateCache(ttl_seconds=settings.state_cache_ttl_seconds)
    app.state.state_cache = state_cache

    documents = DocumentRepository(state_db_pool)
    events = EventRepository(state_db_pool)
    backups = BackupRepository(state_db_pool)

    document_store = DocumentStore(state_db_pool, cache=state_cache, documents=documents, events=events)
    app.state.document_store = document_store
    app.state.event_repository = events
    app.state.backup_repository = backups
    app.state.restore_engine = RestoreEngine(document_store, backups)
    app.state.backup_scheduler = BackupScheduler(documents, backups, source=settings.backup_source)

    logger.success("State store registered", cache_enabled=state_cache is not None)

    @app.on_event("startup")
    async def startup_state_store():
        """Initialize the state database, take the startup backup and start the backup cadences."""
        await app.state.state_db_pool.initialize()
        logger.success("State database initialized")

        scheduler: BackupScheduler = app.state.backup_scheduler
        try:
            await scheduler.ensure_initial_backup()
        except StateStoreError as e:
            logger.error(f"Startup backup failed: {e.detail}")

        if not settings.enable_backup_scheduler:
            logger.info("Recurring backups disabled (enable_backup_scheduler=false)")
            return

        scheduler.schedule_recurring(
            hourly_interval_minutes=settings.backup_hourly_interval_minutes,
            daily_interval_hours=settings.backup_daily_interval_hours,
        )

    @app.on_event("shutdown")
    async def shutdown_state_store():
        """Stop the backup cadences and close database connections."""
        await app.state.backup_scheduler.stop()
        await app.state.state_db_pool.close()
        logger.info("State database closed")


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    if route.tags:
        return f"{route.tags[0]}-{route.name}"
    return route.name


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
