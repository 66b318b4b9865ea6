"""
Global exception handlers.

- KnownError (and subclasses) -> failure envelope with the error's status code
- Exception (catch-all) -> unknown_failure envelope, 500, no internals leaked
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from rewardstore.models.failure import (
    ApiResponse,
    KnownError,
    OutcomeType,
    PartialFailureError,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(KnownError)
    async def known_error_handler(request: Request, exc: KnownError) -> JSONResponse:
        if isinstance(exc, PartialFailureError):
            level = logging.ERROR
        elif exc.outcome == OutcomeType.REFUSAL:
            level = logging.INFO
        else:
            level = logging.WARNING
        logger.log(
            level,
            "%s: %s",
            exc.kind.value,
            exc.detail or exc.message,
            extra={"failure_kind": exc.kind.value, "path": request.url.path},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unknown_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception on %s",
            request.url.path,
            exc_info=exc,
            extra={"failure_kind": "unknown", "path": request.url.path},
        )
        response = ApiResponse.unknown_failure(detail=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )
