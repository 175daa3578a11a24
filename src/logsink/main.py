"""
Main FastAPI application entry point.

This module sets up the FastAPI app with routes, error handlers and the
lifespan that starts and drains the dispatcher.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import admin_router, healthz_router, loglevel_router, metrics_router
from .config import Settings, get_settings
from .core.config_store import ConfigStore
from .core.dispatcher import Dispatcher
from .core.exceptions import ConfigurationError, LogSinkException
from .core.health import HealthChecker
from .core.metrics import MetricsCollector


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Silence the verbose watchfiles logger
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def check_directories(settings: Settings) -> None:
    """Config directory and log root must already exist."""
    for name, path in (
        ("config_dir", settings.storage.config_dir),
        ("log_root", settings.storage.log_root),
    ):
        if not path.exists():
            raise ConfigurationError(f"{name} does not exist", details={"path": str(path)})
        if not path.is_dir():
            raise ConfigurationError(f"{name} is not a directory", details={"path": str(path)})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Starts the dispatcher on startup; on shutdown lets it deliver queued
    batches and drains every worker so all log files are fsynced and closed.
    """
    logger = structlog.get_logger(__name__)
    settings = get_settings()
    logger.info(
        "Starting LogSink service",
        version=app.version,
        config_dir=str(settings.storage.config_dir),
        log_root=str(settings.storage.log_root),
    )

    check_directories(settings)

    metrics_collector = MetricsCollector()
    app.state.metrics = metrics_collector

    dispatcher = Dispatcher(
        config_store=ConfigStore(settings.storage.config_dir),
        log_root=settings.storage.log_root,
        settings=settings.worker,
        metrics=metrics_collector,
    )
    app.state.dispatcher = dispatcher
    await dispatcher.start()

    app.state.health_checker = HealthChecker(settings, dispatcher)

    try:
        logger.info("LogSink service started successfully")
        yield
    finally:
        logger.info("Shutting down LogSink service")
        await dispatcher.stop()
        logger.info("LogSink service shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="LogSink",
        description="Per-application loglevel log ingestor writing rotated JSON Lines files",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Browser clients post from other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.add_exception_handler(LogSinkException, logsink_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(loglevel_router, tags=["logs"])
    app.include_router(admin_router, tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "LogSink",
            "version": app.version,
            "ingest": "POST /loglevel/{appname}",
            "docs": "/docs",
        }

    return app


async def logsink_exception_handler(request: Request, exc: LogSinkException) -> JSONResponse:
    """Handle custom LogSink exceptions."""
    logger = structlog.get_logger(__name__)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        error=str(exc),
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "Internal Server Error",
        },
    )


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "logsink.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
