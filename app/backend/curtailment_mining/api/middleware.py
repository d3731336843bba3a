"""
Middleware and error handlers for the FastAPI application.
"""

import time
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from curtailment_mining.core.exceptions import (
    CurtailmentMiningException,
    NotFoundError,
    ValidationError,
)
from curtailment_mining.api.schemas.common import create_error_response


logger = structlog.get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            client_ip=request.client.host if request.client else None,
        )

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


def _status_for(exc: CurtailmentMiningException) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def curtailment_exception_handler(request: Request, exc: CurtailmentMiningException) -> JSONResponse:
    logger.error("Request raised", url=str(request.url), error_code=exc.code, error=exc.message)
    body = create_error_response(exc.message, exc.code, exc.details)
    return JSONResponse(status_code=_status_for(exc), content=body.model_dump(mode="json"))


def add_middleware(app: FastAPI) -> None:
    """Add middleware and exception handlers to the FastAPI app."""
    app.add_exception_handler(CurtailmentMiningException, curtailment_exception_handler)
    app.add_middleware(LoggingMiddleware)
    logger.info("Middleware configured successfully")
