"""App-wide exception handlers: everything leaves in the response envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from api.base import ErrorCodes, error_json

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_json(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        return error_json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
