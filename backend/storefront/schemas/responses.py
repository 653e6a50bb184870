"""
Storefront Backend — Response Schemas
=======================================

What:  Pydantic models for the JSON envelopes this core writes itself.
Why:   One definition of the error envelope shared by the rate limiter, the
       error handler and the not-found responder; also feeds the OpenAPI docs.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """
    Body of every error envelope.

    `stack` is only filled in development; `retryAfter` only on 429s.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(description="Human-readable error description")
    stack: Optional[str] = Field(default=None, description="Stack trace (development only)")
    retry_after: Optional[int] = Field(
        default=None,
        serialization_alias="retryAfter",
        validation_alias="retryAfter",
        description="Seconds until the rate limit window resets",
    )


class ErrorResponse(BaseModel):
    """
    Example:
        {"error": {"message": "Route GET /nope not found"}}
    """

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status")
    version: str = Field(description="Application version")
    environment: str = Field(description="development, production or test")
    uptime_seconds: float = Field(description="Seconds since service started")
    rate_limited_clients: int = Field(description="Client identifiers currently tracked by the rate limiter")
