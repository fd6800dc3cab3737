"""Application entry point and FastAPI app factory."""

from __future__ import annotations

import asyncio
import logging
from logging.handlers import RotatingFileHandler
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config.dependencies import PipelineServices, build_pipeline_services
from .config.settings import Settings, settings
from .controllers import jobs, speakers, webhooks
from .middleware import StructuredLoggingMiddleware, TelemetryMiddleware
from .services.errors import PipelineError, ValidationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Loggers whose records also go to the webhook log file.
WEBHOOK_LOGGERS = ("app.services.webhook_ingestion", "app.controllers.dependencies")


def _rotating_handler(path: str, max_bytes: int, fmt: str) -> RotatingFileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _configure_logging(config: Settings) -> None:
    """Ensure structured middleware logs stream to stdout and file."""

    logging.getLogger().handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(_rotating_handler(config.log_file, 1_000_000, LOG_FORMAT))
    root_logger.setLevel(logging.DEBUG if config.debug else logging.INFO)

    middleware_logger = logging.getLogger("app.middleware.structured")
    middleware_logger.handlers.clear()
    middleware_stdout = logging.StreamHandler(sys.stdout)
    middleware_stdout.setFormatter(logging.Formatter("%(message)s"))
    middleware_logger.addHandler(middleware_stdout)
    middleware_logger.setLevel(logging.INFO)
    middleware_logger.propagate = False

    pipeline_handler = _rotating_handler(
        config.pipeline_log_file,
        500_000,
        "%(asctime)s | %(levelname)s | %(message)s",
    )
    for name in ("app.services.orchestrator", "app.services.queue_dispatcher"):
        pipeline_logger = logging.getLogger(name)
        pipeline_logger.handlers.clear()
        pipeline_logger.addHandler(pipeline_handler)
        pipeline_logger.setLevel(logging.INFO)

    webhook_handler = _rotating_handler(
        config.webhook_log_file,
        500_000,
        "%(asctime)s | %(levelname)s | %(message)s",
    )
    for name in WEBHOOK_LOGGERS:
        webhook_logger = logging.getLogger(name)
        webhook_logger.handlers.clear()
        webhook_logger.addHandler(webhook_handler)
        webhook_logger.setLevel(logging.INFO)

    noisy_loggers = [
        "botocore",
        "boto3",
        "urllib3",
        "pika",
        "sqlalchemy.engine",
    ]
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app(services: Optional[PipelineServices] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = services.settings if services is not None else settings
    _configure_logging(config)

    services = services or build_pipeline_services(config)

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        debug=config.debug,
        description="Presentation review pipeline: job orchestration and worker callbacks",
    )
    app.state.services = services
    app.state.maintenance_task = None

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=config.cors_allow_credentials,
        allow_methods=config.cors_allow_methods,
        allow_headers=config.cors_allow_headers,
    )

    app.include_router(webhooks.router)
    app.include_router(jobs.router)
    app.include_router(speakers.router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        """Root endpoint."""

        return {
            "message": f"Welcome to {config.app_name}",
            "version": config.app_version,
            "status": "operational",
        }

    @app.get("/health", include_in_schema=False)
    async def health_check() -> dict[str, object]:
        """Health check endpoint."""

        return {
            "status": "healthy",
            "service": config.app_name,
            "version": config.app_version,
            "queues": services.dispatcher.status(),
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose application metrics for Prometheus scraping."""

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code, **exc.extra},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=ValidationError.status_code,
            content={
                "detail": "Invalid request payload",
                "code": ValidationError.code,
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        await services.init_models()
        if config.pipeline.sweep_enabled:
            app.state.maintenance_task = asyncio.create_task(
                services.maintenance.run_periodically()
            )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        services.maintenance.stop()
        task = app.state.maintenance_task
        if task is not None:
            await task
        await services.dispose()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
