"""FastAPI application for the godoc.org migration shim."""

import logging
import re
from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.http_client import close_http_clients
from core.logger import configure_logging
from core.middleware import PkgGoDevRedirectMiddleware, TeeMiddleware
from routes import health_router, legacy_router
from services.collector_service import drain_pending_sends

configure_logging()
logger = logging.getLogger(__name__)

# Operational endpoints are served by the shim itself and never redirected.
REDIRECT_EXEMPT_URLS = [
    re.compile(r"^/_ah/"),
    re.compile(r"^/-/(bot|refresh)$"),
]


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        extra={
            "exc_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Flush in-flight tees and close shared HTTP clients on shutdown."""
    settings = get_settings()
    logger.info(
        "init.complete",
        extra={
            "new_site_host": settings.new_site_host,
            "legacy_origin": settings.legacy_origin,
            "tee_enabled": settings.tee_enabled,
        },
    )
    try:
        yield
    finally:
        await drain_pending_sends(timeout=settings.http_timeout)
        await close_http_clients()


_settings = get_settings()

app = fastapi.FastAPI(
    title="godoc.org migration shim",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if _settings.debug else None,
)

app.add_exception_handler(Exception, global_exception_handler)

if _settings.tee_enabled:
    app.add_middleware(TeeMiddleware)

# Outermost: redirected requests are neither teed nor proxied.
app.add_middleware(PkgGoDevRedirectMiddleware, exempt_urls=REDIRECT_EXEMPT_URLS)

app.include_router(health_router)
# Must be last: catches every remaining path
app.include_router(legacy_router)
