"""
Storefront Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, exception handling, route
       mounting and lifecycle management in one place.
How:   Factory pattern: create_app(settings) returns a configured FastAPI
       instance. Business routers (shop, workshops, portfolio, mural
       requests) are passed in by the caller.
Who:   Called by the startup entry point (storefront.server:main), by
       `storefront.asgi` (for `uvicorn storefront.asgi:app`), and by the tests.

Middleware Chain (request direction, outermost first):
    Security Headers → CORS → Request ID → Access Log → Input Sanitizer
    → Rate Limiter → Error Handler → Router → (Not Found responder)

    Starlette runs middleware in REVERSE order of add_middleware(), so they
    are added innermost first below.

Lifecycle:
    Startup:  start the rate-limit sweep task, log startup
    Shutdown: cancel the sweep task, log shutdown
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import APIRouter, FastAPI

from storefront import __version__
from storefront.config import Settings, load_settings
from storefront.logger import logger, setup_logging
from storefront.middleware.cors import EnvelopeCORSMiddleware
from storefront.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers
from storefront.middleware.logging import RequestLoggingMiddleware
from storefront.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from storefront.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware
from storefront.middleware.sanitize import InputSanitizerMiddleware
from storefront.middleware.security_headers import SecurityHeadersMiddleware
from storefront.routes import health


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manage application lifecycle: startup and shutdown procedures.

    The sweep task evicts expired rate-limit entries on a timer, independent
    of request traffic, so memory stays bounded under many distinct clients.
    """
    settings: Settings = app.state.settings
    limiter: RateLimiter = app.state.rate_limiter

    # ── Startup ───────────────────────────────────────────────────────────
    sweeper = asyncio.create_task(limiter.run_sweeper(settings.rate_limit_sweep_interval))
    logger.info(
        "Storefront backend starting up",
        {"environment": settings.environment, "version": __version__},
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Shutting down gracefully")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Server closed")


def create_app(
    settings: Optional[Settings] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Validated configuration; read from the environment if omitted.
        routers:  Business routers to mount after the built-in routes.

    Returns:
        A FastAPI instance with the full middleware pipeline installed.
    """
    settings = settings or load_settings()
    setup_logging(settings)

    rate_limiter = RateLimiter(
        window_ms=settings.rate_limit_window_ms,
        max_requests=settings.rate_limit_requests,
    )

    app = FastAPI(
        title="Storefront API",
        description="Backend for the workshops, shop, portfolio and mural-request site.",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter

    # ── Register Middleware (innermost first) ─────────────────────────────

    # Terminal error stage: everything raised by routes funnels here
    app.add_middleware(ErrorHandlerMiddleware, settings=settings)

    # Rejected requests never reach the router
    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)

    app.add_middleware(InputSanitizerMiddleware)

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        EnvelopeCORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials="*" not in settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            REQUEST_ID_HEADER,
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )

    # Outermost, so every response (429, 404, errors) carries the headers
    app.add_middleware(SecurityHeadersMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, settings)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    for router in routers:
        app.include_router(router)

    return app

