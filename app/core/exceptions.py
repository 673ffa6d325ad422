"""Typed integration errors and the HTTP error envelope."""

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Object store operation failed."""


class BucketNotFoundError(StorageError):
    pass


class BucketAlreadyExistsError(StorageError):
    pass


class EdgeFunctionError(Exception):
    """Invocation of a processing worker function failed."""

    def __init__(self, function_name: str, message: str, status_code: int | None = None):
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name
        self.message = message
        self.status_code = status_code


class InvalidStatusTransition(Exception):
    """A lifecycle status change that the state machine does not allow."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException as `{"error": detail}`."""
    if exc.status_code >= 500:
        logger.error(
            "request failed",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.detail,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies and params are client errors: 400 with field details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )
