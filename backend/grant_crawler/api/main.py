"""
FastAPI application factory and main entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from grant_crawler.api.middleware import WideEventMiddleware
from grant_crawler.api.routes import health, jobs, records
from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import (
    AnalysisError,
    FetchError,
    GrantCrawlerException,
    PersistenceError,
    ResourceNotFoundError,
    ValidationError,
)
from grant_crawler.core.logging import configure_logging
from grant_crawler.db import close_db, init_db
from grant_crawler.services.crawl_service import CrawlService

# Configure structured logging with wide events support
configure_logging(
    json_logs=not settings.debug,  # JSON in production, console in dev
    log_level="DEBUG" if settings.debug else "INFO",
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("Starting Grant Crawler API", version=settings.app_version)
    await init_db()
    logger.info("Database initialized")

    # Tests may install their own service before startup
    service = getattr(app.state, "crawl_service", None)
    if service is None:
        service = CrawlService()
        app.state.crawl_service = service

    if settings.scheduler_enabled:
        await service.start()
        logger.info("Job scheduler started", max_concurrent=service.scheduler.max_concurrent)
    else:
        logger.warning("Job scheduler disabled, submitted jobs stay pending")

    yield

    logger.info("Shutting down Grant Crawler API")
    await service.shutdown()
    await close_db()
    logger.info("Database connections closed")


def _error_response(status_code: int, exc: GrantCrawlerException, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": exc.message,
                "type": error_type,
                "details": exc.details,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Crawl-job orchestration and grant extraction pipeline",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Wide Events middleware - canonical log line per request
    app.add_middleware(WideEventMiddleware)

    app.include_router(health.router, tags=["Health"])
    app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
    app.include_router(records.router, prefix="/api/v1", tags=["Records"])

    # Exception Handlers
    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors"""
        logger.warning("Validation error", url=str(request.url), errors=exc.errors())
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Validation failed",
                    "type": "validation_error",
                    "details": jsonable_errors(exc),
                }
            },
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        logger.warning("Invalid request", url=str(request.url), message=exc.message)
        return _error_response(422, exc, "validation_error")

    @app.exception_handler(ResourceNotFoundError)
    async def not_found_exception_handler(request: Request, exc: ResourceNotFoundError):
        """Handle not found errors"""
        logger.info("Resource not found", url=str(request.url), message=exc.message)
        return _error_response(404, exc, "not_found_error")

    @app.exception_handler(FetchError)
    async def fetch_exception_handler(request: Request, exc: FetchError):
        logger.error("Fetch provider error", url=str(request.url), message=exc.message)
        return _error_response(502, exc, "fetch_error")

    @app.exception_handler(AnalysisError)
    async def analysis_exception_handler(request: Request, exc: AnalysisError):
        logger.error("AI provider error", url=str(request.url), message=exc.message)
        return _error_response(502, exc, "analysis_error")

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        """Handle database errors"""
        logger.error("Database error", url=str(request.url), error=exc.message)
        return _error_response(503, exc, "persistence_error")

    @app.exception_handler(GrantCrawlerException)
    async def app_exception_handler(request: Request, exc: GrantCrawlerException):
        """Handle custom app exceptions"""
        logger.error("App error", url=str(request.url), message=exc.message)
        return _error_response(500, exc, "application_error")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error("Unexpected error", url=str(request.url), error=str(exc), exc_info=True)

        # Don't expose internal details in production
        message = str(exc) if settings.debug else "An unexpected error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": message,
                    "type": "internal_server_error",
                }
            },
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw ctx objects pydantic attaches."""
    return [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "grant_crawler.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
