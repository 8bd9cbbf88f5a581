"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from location_api.core.cache import create_cache
from location_api.core.config import get_settings
from location_api.core.database import dispose_engine, init_engine, translate_store_error
from location_api.core.exceptions import LocationApiError
from location_api.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: engine and cache on startup, released on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir, json_logs=settings.log_json)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)
    app.state.cache = create_cache(settings)
    logger.info(f"Location API started (environment={settings.environment})")

    yield

    await app.state.cache.close()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Location API",
        description="Geospatial location hierarchy with address component taxonomy",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(LocationApiError)
    async def location_api_error_handler(request: Request, exc: LocationApiError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        operation = f"{request.method} {request.url.path}"
        logger.opt(exception=exc).error(f"{operation} failed in the relational store")
        error = translate_store_error(exc, operation)
        return JSONResponse(status_code=error.status_code, content=jsonable_encoder(error.to_dict()))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "code": "validation_error", "context": {}},
        )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness probe."""
        return {"status": "healthy", "cache": "enabled" if settings.cache_enabled else "disabled"}

    # Register middleware and routers
    from location_api.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
