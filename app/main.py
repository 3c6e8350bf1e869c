# app/main.py
"""
FastAPI application: operator control surface plus the in-process scheduler.
"""

import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.db.pool import db_pool
from app.features.event_lifecycle.api.router import router as events_router
from app.features.event_lifecycle.container import ServiceContainer, build_container
from app.features.event_lifecycle.errors import (
    BackendAccessError,
    EventNotFoundError,
    LifecycleError,
    TransientIOError,
)
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "Invalid request: " + "; ".join(parts)


def create_app(
    container: ServiceContainer | None = None,
    container_factory: Callable[[], ServiceContainer] = build_container,
) -> FastAPI:
    """
    Build the application.

    Passing a ready container skips database and scheduler startup, which is
    what tests do.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container is not None:
            yield
            return

        logger.info("Application starting", environment=settings.environment, debug=settings.debug)
        settings.validate_for_startup()

        startup_tasks = []
        try:
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")

            app.state.container = container_factory()
            startup_tasks.append("services")

            if settings.SCHEDULER_ENABLED:
                app.state.container.scheduler.start()
                startup_tasks.append("scheduler")

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

        logger.info("Application shutting down")
        shutdown_errors = []

        try:
            await app.state.container.close()
        except Exception as e:
            logger.error("Error closing services", error=str(e))
            shutdown_errors.append(f"Services: {e}")

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

    app = FastAPI(
        title="Family Events",
        description="Family event discovery, approval and safe registration",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(RequestContextMiddleware)

    app.include_router(health.router)
    app.include_router(events_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        response = _error(exc.status_code, str(exc.detail))
        for name, value in (exc.headers or {}).items():
            response.headers[name] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, _validation_message(exc))

    @app.exception_handler(LifecycleError)
    async def lifecycle_exception_handler(request: Request, exc: LifecycleError):
        if isinstance(exc, EventNotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, BackendAccessError):
            status_code = status.HTTP_502_BAD_GATEWAY
        elif isinstance(exc, TransientIOError):
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            status_code = status.HTTP_400_BAD_REQUEST

        logger.warning(
            "Request failed",
            path=request.url.path,
            error=exc.message,
            error_type=type(exc).__name__,
            operation=exc.operation,
        )
        return _error(status_code, exc.message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error", path=request.url.path, error=str(exc), error_type=type(exc).__name__
        )
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

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

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
