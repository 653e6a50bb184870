"""
Storefront Backend — Error Handling
=====================================

What:  The single place where failures become HTTP responses.
Why:   Clients must always get a JSON envelope, never a stack trace page, and
       production must never leak internal messages.
How:   `ErrorHandlerMiddleware` wraps the router and converts anything raised
       below it with `build_error_response()`. Framework exceptions
       (HTTPException, request validation) are routed into the same function
       by the handlers in `register_exception_handlers()`.
Who:   Business routes raise `AppError` subclasses; bugs raise whatever they raise.

Response shape:
    {"error": {"message": "...", "stack": "..."}}   # stack: development only

Classification:
    Operational (AppError) → its own status code, message shown verbatim
    Unexpected (anything)  → 500; message hidden in production

Every handled failure is logged at ERROR with name, message, path and
method; the stack is added to the log entry in development.
"""

import functools
import traceback
from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from storefront.config import Settings
from storefront.exceptions import AppError, OperationalFailure, classify_error
from storefront.logger import logger
from storefront.middleware.request_id import request_id_var
from storefront.schemas.responses import ErrorDetail, ErrorResponse

log = logger.child("errors")

GENERIC_ERROR_MESSAGE = "Internal server error"
FALLBACK_ERROR_MESSAGE = "An unexpected error occurred"


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _as_operational(exc: BaseException) -> BaseException:
    """Framework HTTP exceptions are deliberate rejections; treat them as AppErrors."""
    if isinstance(exc, StarletteHTTPException):
        app_error = AppError(exc.status_code, str(exc.detail))
        app_error.__traceback__ = exc.__traceback__
        return app_error
    return exc


def build_error_response(
    request: Request,
    exc: BaseException,
    settings: Settings,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """
    Log a failure and shape the JSON response the client receives.

    Args:
        request:  The in-flight request (for path/method in the log)
        exc:      Whatever was raised
        settings: Decides whether stacks and raw messages are exposed
        headers:  Extra response headers (e.g. Allow on 405)
    """
    exc = _as_operational(exc)
    stack = _format_stack(exc) if settings.is_development else None

    log_data = {
        "name": type(exc).__name__,
        "message": str(exc),
        "path": request.url.path,
        "method": request.method,
    }
    request_id = request_id_var.get()
    if request_id:
        log_data["requestId"] = request_id
    if stack is not None:
        log_data["stack"] = stack
    log.error("Request failed", log_data)

    outcome = classify_error(exc)
    if isinstance(outcome, OperationalFailure):
        status_code = outcome.status_code
        message = outcome.message
    else:
        status_code = 500
        if settings.is_production:
            message = GENERIC_ERROR_MESSAGE
        else:
            message = str(outcome.cause) or FALLBACK_ERROR_MESSAGE

    body = ErrorResponse(error=ErrorDetail(message=message, stack=stack))
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def not_found_handler(request: Request) -> JSONResponse:
    """404 for requests no route matched."""
    body = ErrorResponse(
        error=ErrorDetail(message=f"Route {request.method} {request.url.path} not found")
    )
    return JSONResponse(status_code=404, content=body.model_dump(exclude_none=True))


class ErrorHandlerMiddleware:
    """
    Terminal error stage, registered directly around the router.

    Pure ASGI so the original exception is seen unchanged. If the app had
    already started its response when it failed, a second response cannot be
    sent; the exception is re-raised for the server to close the connection.
    """

    def __init__(self, app: ASGIApp, settings: Settings):
        self.app = app
        self.settings = settings

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking_start(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking_start)
        except Exception as exc:
            if response_started:
                raise
            response = build_error_response(Request(scope), exc, self.settings)
            await response(scope, receive, send)


def async_handler(
    fn: Callable[..., Awaitable[Any]],
) -> Callable[..., Awaitable[Any]]:
    """
    Wrap an async route handler so its failures become error responses.

    The wrapped handler must take the `Request` (positionally or as
    `request=`); the app's settings are read from `request.app.state`.

        @router.post("/mural-requests")
        @async_handler
        async def create_mural_request(request: Request): ...
    """

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            request = kwargs.get("request")
            if not isinstance(request, Request):
                request = next((arg for arg in args if isinstance(arg, Request)), None)
            if request is None:
                raise
            return build_error_response(request, exc, request.app.state.settings)

    return wrapper


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Keep framework-raised exceptions inside the same JSON envelope.

    Handler map:
        HTTPException, no route matched   → not_found_handler (404)
        HTTPException, anything else      → operational, its status + detail
        RequestValidationError            → operational 422
        Exception (last resort)           → build_error_response
    """

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
        # The router sets "endpoint" in the scope only when a route matched
        if exc.status_code == 404 and "endpoint" not in request.scope:
            return not_found_handler(request)
        return build_error_response(request, exc, settings, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> Response:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        )
        return build_error_response(
            request, AppError(422, f"Request validation failed: {problems}"), settings
        )

    # Only reached if a middleware outside ErrorHandlerMiddleware fails
    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> Response:
        return build_error_response(request, exc, settings)
