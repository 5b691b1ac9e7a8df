"""
Global Exception Handlers for Gatekeeper

Every error leaves the API in one envelope:

{
    "error": {
        "status_code": 401,
        "error_code": "TWO_FACTOR_INVALID_CODE",
        "message": "Invalid verification code",
        "type": "Unauthorized",
        "path": "/api/v1/2fa/verify"
    }
}

401 responses carry `WWW-Authenticate: Bearer`. Messages of 5xx errors are
replaced with a generic one so internals never reach the client.
"""

import logging
from typing import Any, Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatekeeper.exceptions import ErrorCode, GatekeeperError

logger = logging.getLogger(__name__)

GENERIC_SERVER_MESSAGE = "An unexpected error occurred. Please try again later."

# status code -> (human readable type, default error code)
HTTP_ERRORS: dict[int, tuple[str, ErrorCode]] = {
    400: ("Bad Request", ErrorCode.VALIDATION_FAILED),
    401: ("Unauthorized", ErrorCode.AUTH_FAILED),
    403: ("Forbidden", ErrorCode.AUTH_PERMISSION_DENIED),
    404: ("Not Found", ErrorCode.RESOURCE_NOT_FOUND),
    409: ("Conflict", ErrorCode.VALIDATION_DUPLICATE_RESOURCE),
    422: ("Validation Error", ErrorCode.VALIDATION_FAILED),
    429: ("Too Many Requests", ErrorCode.RATE_LIMIT_EXCEEDED),
    500: ("Internal Server Error", ErrorCode.INTERNAL_ERROR),
    503: ("Service Unavailable", ErrorCode.SERVICE_UNAVAILABLE),
}


def get_error_type(status_code: int) -> str:
    return HTTP_ERRORS.get(status_code, ("Error", ErrorCode.UNKNOWN_ERROR))[0]


def get_http_error_code(status_code: int) -> ErrorCode:
    return HTTP_ERRORS.get(status_code, ("Error", ErrorCode.UNKNOWN_ERROR))[1]


def create_error_response(
    request: Request,
    status_code: int,
    message: str,
    error_code: ErrorCode | str | None = None,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the error envelope for `request`."""
    if status_code >= 500:
        message = GENERIC_SERVER_MESSAGE
        details = None

    body: dict[str, Any] = {
        "status_code": status_code,
        "message": message,
        "type": get_error_type(status_code),
        "path": request.url.path,
    }
    if error_code:
        body["error_code"] = error_code.value if isinstance(error_code, ErrorCode) else error_code
    if details:
        body["details"] = details

    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer", **(headers or {})}

    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


async def gatekeeper_exception_handler(request: Request, exc: GatekeeperError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={"status_code": exc.status_code, "error_code": exc.error_code.value, "path": request.url.path},
    )
    return create_error_response(request, exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(f"HTTPException: {exc.detail}", extra={"status_code": exc.status_code, "path": request.url.path})
    return create_error_response(
        request,
        exc.status_code,
        str(exc.detail),
        get_http_error_code(exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Flatten pydantic errors into field/message pairs."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error on {request.url.path}", extra={"errors": errors})

    return create_error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        ErrorCode.VALIDATION_FAILED,
        details={"validation_errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_SERVER_MESSAGE, ErrorCode.INTERNAL_ERROR
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(GatekeeperError, gatekeeper_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
