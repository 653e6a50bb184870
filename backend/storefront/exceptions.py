"""
Storefront Backend — Error Taxonomy
=====================================

What:  Application error types and the boundary classification of failures.
Why:   The error handler must tell expected rejections (safe to show the
       client verbatim) apart from bugs (hidden in production).
How:   Application code raises `AppError` (or a subclass) carrying an HTTP
       status and a message. At the boundary, `classify_error()` turns any
       exception into a tagged outcome: `OperationalFailure` or
       `UnexpectedFailure`.
Who:   Raised by business routes; classified by the error handler middleware.

Error Hierarchy:
    AppError (operational, carries status_code)
    ├── BadRequestError    → 400
    ├── UnauthorizedError  → 401
    ├── ForbiddenError     → 403
    ├── NotFoundError      → 404
    └── ConflictError      → 409

    ConfigurationError     → startup only (never reaches a request)
    PortUnavailableError   → startup only

Design Decision:
    Classification reads the `is_operational` flag fixed when the error was
    constructed rather than matching on the concrete class. Any exception
    type can opt in by carrying the flag and a `status_code`; everything
    else is unexpected.
"""

from dataclasses import dataclass
from typing import List, Union


class AppError(Exception):
    """
    Operational failure raised deliberately by application code.

    Attributes:
        status_code:     HTTP status the client receives
        message:         Human-readable description, returned verbatim
        is_operational:  Always True for errors built through this class
    """

    def __init__(self, status_code: int, message: str, is_operational: bool = True):
        self.status_code = status_code
        self.message = message
        self.is_operational = is_operational
        super().__init__(message)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request"):
        super().__init__(400, message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, message)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(403, message)


class NotFoundError(AppError):
    """
    Raised when a requested resource does not exist.

    Example:
        raise NotFoundError("Workshop not found")
    """

    def __init__(self, message: str = "Not found"):
        super().__init__(404, message)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict"):
        super().__init__(409, message)


class ConfigurationError(Exception):
    """Environment validation failed; the server must not start."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "Environment validation failed:\n" + "\n".join(f"  - {e}" for e in self.errors)
        )


class PortUnavailableError(Exception):
    """No bindable port was found in the scan window."""

    def __init__(self, start_port: int, attempts: int):
        self.start_port = start_port
        self.attempts = attempts
        super().__init__(f"No available port found starting from {start_port}")


# ══════════════════════════════════════════════════════════════════════════
# Boundary Classification
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OperationalFailure:
    status_code: int
    message: str
    cause: BaseException


@dataclass(frozen=True)
class UnexpectedFailure:
    cause: BaseException


ErrorOutcome = Union[OperationalFailure, UnexpectedFailure]


def classify_error(exc: BaseException) -> ErrorOutcome:
    """
    Decide how a failure is presented to the client.

    An error is operational only when it was constructed as one: it carries
    `is_operational=True` and an integer `status_code`. Everything else
    (bugs, library errors, operational flags set to False) is unexpected.
    """
    status_code = getattr(exc, "status_code", None)
    if getattr(exc, "is_operational", False) is True and isinstance(status_code, int):
        message = getattr(exc, "message", None) or str(exc)
        return OperationalFailure(status_code=status_code, message=message, cause=exc)
    return UnexpectedFailure(cause=exc)
