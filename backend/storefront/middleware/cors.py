"""
Storefront Backend — CORS Middleware
======================================

What:  Starlette's `CORSMiddleware` with preflight rejections rendered in the
       JSON error envelope instead of a plain-text body.
How:   `preflight_response()` defers to Starlette for the policy decision and
       only rewrites the body of a rejected preflight. Status (400) and CORS
       headers are kept as Starlette computed them.
"""

from starlette.datastructures import Headers
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response

from storefront.logger import logger
from storefront.schemas.responses import ErrorDetail, ErrorResponse

log = logger.child("cors")

CORS_REJECTION_MESSAGE = "Not allowed by CORS"

# Recomputed by JSONResponse for the new body
_BODY_HEADERS = {"content-length", "content-type"}


class EnvelopeCORSMiddleware(CORSMiddleware):
    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code < 400:
            return response

        log.warn(
            "CORS preflight rejected",
            {
                "origin": request_headers.get("origin"),
                "method": request_headers.get("access-control-request-method"),
                "reason": response.body.decode("utf-8", "replace"),
            },
        )
        body = ErrorResponse(error=ErrorDetail(message=CORS_REJECTION_MESSAGE))
        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in _BODY_HEADERS
        }
        return JSONResponse(
            status_code=response.status_code,
            content=body.model_dump(exclude_none=True),
            headers=headers,
        )
