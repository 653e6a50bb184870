"""
Storefront Backend — Health Check Route
=========================================

What:  Liveness endpoint for load balancers and uptime monitors.
How:   Reports version, environment, uptime and how many clients the rate
       limiter is currently tracking (a cheap signal of traffic spread).
"""

import time

from fastapi import APIRouter, Request

from storefront import __version__
from storefront.middleware.error_handler import async_handler
from storefront.schemas.responses import ErrorResponse, HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Service health check",
)
@async_handler
async def health_check(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    limiter = request.app.state.rate_limiter
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.environment,
        uptime_seconds=round(time.time() - _start_time, 2),
        rate_limited_clients=len(limiter),
    )
