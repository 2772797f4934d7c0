"""
Error taxonomy and exception handlers.

Domain code raises one of the HTTPException subclasses below at the point a
problem is detected. The handlers registered by ``register_exception_handlers``
turn every failure, expected or not, into the standard response envelope.
"""
import traceback
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.logger import logger
from core.responses import error_response
import config


class AuthenticationError(HTTPException):
    """Missing, invalid or expired credential."""

    def __init__(self, detail: str = "Not authorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(HTTPException):
    """Authenticated caller is not permitted to perform the action."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ValidationError(HTTPException):
    """Malformed input, uniqueness violation or business-rule violation."""

    def __init__(self, detail: str = "Validation failed", errors: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
        self.errors = errors


class RateLimitError(HTTPException):
    def __init__(self, detail: str = "Too many requests. Please try again later."):
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)


class UnexpectedError(HTTPException):
    """Anything not covered above, storage failures included."""

    def __init__(self, detail: str = "Failed to process request"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


def describe_operation(request: Request) -> str:
    """Human readable operation name for the route that handled ``request``."""
    route = request.scope.get("route")
    name = getattr(route, "name", None)
    if not name:
        return "process request"
    return name.replace("_", " ")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    data = None
    if isinstance(exc, ValidationError) and exc.errors is not None:
        data = {"errors": exc.errors}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(str(exc.detail), data=data),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", []) if part != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    logger.warning(f"Validation failed on {request.method} {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_response("Validation failed", data={"errors": errors}),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    user_id = getattr(request.state, "user_id", None)
    logger.error(
        f"Unhandled error on {request.method} {request.url.path} "
        f"(user: {user_id or 'anonymous'}): {exc}",
        exc_info=True,
    )
    failure = UnexpectedError(f"Failed to {describe_operation(request)}")
    stack = None
    if config.ENVIRONMENT != "production":
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(
        status_code=failure.status_code,
        content=error_response(failure.detail, error=stack),
    )


def register_exception_handlers(app: FastAPI):
    """Attach the envelope-producing handlers to ``app``."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
