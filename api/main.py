"""
FastAPI application for the vendor management engine.

Every v1 route is tenant-scoped through the ``X-Tenant-ID`` header; the
schema is created on startup and the pooled connections are disposed on
shutdown.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.middleware import (
    ErrorHandlingMiddleware,
    setup_error_handlers,
    StructuredLoggingMiddleware,
    setup_logging,
)
from core.middleware.error_handling import error_envelope
from database.engine import init_db, close_db
from api.routes import health
from api.routes.v1 import (
    agencies,
    budgets,
    candidates,
    distributions,
    jobs,
    rate_cards,
)

# Before any module logger emits
setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

logger = logging.getLogger(__name__)

V1_ROUTERS = (
    agencies.router,
    jobs.router,
    distributions.router,
    candidates.router,
    rate_cards.router,
    budgets.router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.app_name} ({settings.app_env}): "
        f"ownership {settings.ownership_protection_days}d, "
        f"exclusivity {settings.exclusive_window_days}d, "
        f"forecast window {settings.forecast_window_days}d"
    )
    await init_db()
    yield
    logger.info(f"Shutting down {settings.app_name}")
    await close_db()


app = FastAPI(
    title=settings.app_name,
    description="Agency matching, job distribution, placement fees and budget control",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

setup_error_handlers(app)

# Middleware runs in reverse order of registration: errors wrap logging wraps CORS
app.add_middleware(ErrorHandlingMiddleware, debug=settings.debug)
app.add_middleware(
    StructuredLoggingMiddleware,
    log_request_body=settings.log_request_body,
    max_body_size=settings.log_max_body_size,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["content-type", settings.tenant_header, "x-actor-id", "x-request-id"],
    expose_headers=["x-request-id"],
)

app.include_router(health.router, tags=["Health"])
for router in V1_ROUTERS:
    app.include_router(router, prefix=settings.api_v1_prefix)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last resort for errors raised inside an exception handler."""
    logger.error(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_envelope(
            "INTERNAL_SERVER_ERROR",
            "An unexpected error occurred",
            request.url.path,
            request.method,
        ),
    )
