"""Request-scoped middleware for API requests."""

import logging
import re
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{8,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an ID and logs its outcome.

    A well-formed incoming X-Request-ID is kept so traces line up with
    the caller's; anything else is replaced.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if _REQUEST_ID_PATTERN.match(incoming) else str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "%s %s -> %s (request_id=%s)",
            request.method,
            request.url.path,
            response.status_code,
            request_id,
        )
        return response
