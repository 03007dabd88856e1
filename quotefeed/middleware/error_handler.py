"""
Error Handler Middleware
Every failure leaves the API as {error, message, details, path, method, timestamp}.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from quotefeed.errors import (
    QuoteFeedError, create_http_exception, create_structured_error_response,
    sanitize_error_message
)

logger = logging.getLogger(__name__)


def _request_context(request: Request) -> Dict[str, str]:
    return {"path": request.url.path, "method": request.method}


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    structured = create_structured_error_response(QuoteFeedError(message, error, details))
    structured["timestamp"] = int(time.time() * 1000)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": structured["error_type"],
            "message": structured["message"],
            "details": structured["details"],
            **_request_context(request),
            "timestamp": structured["timestamp"],
        }
    )


async def quote_feed_exception_handler(request: Request, exc: QuoteFeedError) -> JSONResponse:
    """Typed domain errors keep their own status code and error code."""
    status_code = create_http_exception(exc).status_code
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{exc.error_code} on {request.method} {request.url.path}: {sanitize_error_message(exc.message)}")
    return _error_response(request, status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
    return _error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request parameter validation (FastAPI/pydantic)."""
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(f"Invalid request {request.method} {request.url.path}: {errors}")
    return _error_response(
        request, 422, "VALIDATION_ERROR", "Request validation failed", {"validation_errors": errors}
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: log with traceback, answer with a generic 500."""
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QuoteFeedError, quote_feed_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
