from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChronosError(Exception):
    """Base class for domain errors surfaced by services and repositories."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ChronosError):
    """Caller supplied a value the operation cannot work with. Not retried."""

    status_code = 400


class NotFound(ChronosError):
    """Requested resource does not exist for the current user."""

    status_code = 404


class TransientStoreFailure(ChronosError):
    """The backing store could not be reached or failed mid-operation."""

    status_code = 503


# PUBLIC_INTERFACE
def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach JSON handlers for the domain error taxonomy.

    Response format:
        {"error": "<ExceptionName>", "message": "...", "detail": "..."}
    """

    @app.exception_handler(ChronosError)
    async def chronos_error_handler(request: Request, exc: ChronosError) -> JSONResponse:
        if isinstance(exc, TransientStoreFailure):
            logger.warning("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "detail": exc.message,
            },
        )
