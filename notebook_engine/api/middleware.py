"""Middleware and error mapping for the engine API"""

import logging
import time
import uuid
from typing import Callable, Dict, Type

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from notebook_engine.api.models import ErrorResponse
from notebook_engine.exceptions import (
    DecodeError,
    EngineException,
    ExecutionCancelledError,
    NotFoundError,
    ScriptError,
    SpawnError,
    TimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching base class wins
STATUS_CODES: Dict[Type[EngineException], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ScriptError: 422,
    DecodeError: 502,
    ExecutionCancelledError: 409,
    SpawnError: 503,
    TimeoutError: 504,
}


def status_for(exc: EngineException) -> int:
    for error_class, code in STATUS_CODES.items():
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(
    status_code: int,
    error: str,
    message: str,
    request: Request,
    details: dict = None
) -> JSONResponse:
    """
    Create standardized error response.

    Args:
        status_code: HTTP status code
        error: Error type
        message: Error message
        request: Original request
        details: Optional additional details

    Returns:
        JSONResponse with error information
    """
    request_id = getattr(request.state, "request_id", "unknown")

    body = ErrorResponse(error=error, message=message, details=details or {})

    logger.warning(
        f"Error response {status_code} {error}: {message}",
        extra={"request_id": request_id, "status_code": status_code}
    )

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id}
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging all API requests and responses.

    Logs request ID, method, path, status code and response time, and adds
    ``X-Request-ID`` / ``X-Response-Time`` headers.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else "unknown",
            }
        )

        response = await call_next(request)
        elapsed_time = time.time() - start_time

        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": round(elapsed_time * 1000, 2)
            }
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_time:.3f}s"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last-resort handler: anything the exception handlers did not turn into
    a response becomes a 500 with the standard error body.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)
        except EngineException as e:
            return error_response(status_for(e), type(e).__name__, e.message, request, e.details)
        except Exception as e:
            logger.error(f"Unhandled exception: {e}", exc_info=True)
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "InternalServerError",
                "An unexpected error occurred",
                request
            )
