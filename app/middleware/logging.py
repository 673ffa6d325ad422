# app/middleware/logging.py
"""
Logging middleware for request/response tracking.
"""

import time
import uuid

from fastapi import Request

from app.core.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)


async def logging_middleware(request: Request, call_next):
    """
    Log all incoming requests and their response times.

    Every event logged while handling the request carries its request id.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    clear_context()
    bind_context(request_id=request_id)
    start_time = time.time()

    logger.info(
        "request started",
        method=request.method,
        path=request.url.path,
        client=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request crashed", method=request.method, path=request.url.path)
        raise
    finally:
        duration = time.time() - start_time

    logger.info(
        "request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response
