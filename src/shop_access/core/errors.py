"""
Error taxonomy for the access-control layer and the JSON handlers that render it.

Every failure leaves the service as a JSON body with a stable ``error`` field.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger("errors")


class AccessError(Exception):
    """Base class for failures that are reported to the caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"error": self.message}


class MissingCredential(AccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "No session ID or token provided"


class InvalidCredential(AccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid session"


class SessionNotFound(AccessError):
    """The token is valid but no session is stored for its shop."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Session not found. Please reinstall the app."


class ScopeDisabled(AccessError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, scope_name: str) -> None:
        self.scope_name = scope_name
        super().__init__(f"Access to {scope_name} data is not enabled")


class NotFound(AccessError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ValidationError(AccessError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request"


class RateLimited(AccessError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many requests, please try again later"


class UpstreamError(AccessError):
    """The Shopify Admin API call failed. Detail is logged, never returned."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Failed to fetch {resource} data")

    def to_body(self) -> dict:
        return {"success": False, "error": self.message}


class InternalError(AccessError):
    pass


class TokenInvalid(Exception):
    """A session token could not be validated. Triggers the session id fallback."""


async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg', 'invalid value')}" if location else "Invalid request"
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Server error on %s %s: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccessError, access_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
