"""Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from shop_access.api.v1 import admin, auth, data
from shop_access.core.auth import SESSION_ID_HEADER
from shop_access.core.database import Database
from shop_access.core.dependencies import get_settings
from shop_access.core.errors import register_exception_handlers
from shop_access.core.rate_limit import create_data_throttle
from shop_access.core.settings import AppSettings
from shop_access.core.usage import UsageLogger, UsageLoggingMiddleware

logger = logging.getLogger("api")


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware. Headers are not logged, they carry credentials."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan for the FastAPI application."""
    database: Database = app.state.database
    logger.info("Initializing database...")
    database.create_all()
    if database.check_connection():
        logger.info("Database initialized successfully!")
    yield
    logger.info("Closing database connections")
    database.dispose()


def create_app(settings: AppSettings | None = None, database: Database | None = None) -> FastAPI:
    """
    Build the application with its store, limiter and usage logger.

    Args:
        settings (AppSettings | None): Defaults to settings read from the environment.
        database (Database | None): Defaults to a store opened on ``settings.database_url``.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    database = database or Database(settings.database_url, settings.database_timeout_seconds)

    app = FastAPI(
        title="Shop Data Access API",
        description="Scoped, API key gated access to a merchant's Shopify data",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.data_throttle = create_data_throttle(settings)

    register_exception_handlers(app)

    app.add_middleware(UsageLoggingMiddleware, usage_logger=UsageLogger(database))
    app.add_middleware(RequestTracingMiddleware)

    # Configure CORS
    allowed_origins = [settings.shopify_app_url] if settings.shopify_app_url else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_origin_regex=settings.cors_allow_origin_regex or None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", SESSION_ID_HEADER, "X-API-Key"],
    )

    # Include routers
    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(data.router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}

    return app
