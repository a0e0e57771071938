"""Response envelope shared by every endpoint.

Success and failure have the same shape (success, data, error, meta), and
meta.request_id matches the X-Request-ID header set by RequestIDMiddleware.
"""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from utils.timezone import now_utc


class APIError(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Message safe to show the user")


class APIMeta(BaseModel):
    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Request identifier for tracing")


class APIResponse(BaseModel):
    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


class ErrorCodes:
    """Values of APIError.code."""

    AUTH_FAILED = "AUTH_FAILED"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    EMAIL_REQUIRED = "EMAIL_REQUIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def request_id_of(request: Request) -> str | None:
    """ID assigned by RequestIDMiddleware, if it ran."""
    return getattr(request.state, "request_id", None)


def _meta(request_id: str | None) -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=request_id or str(uuid4()))


def success_response(data: Any, request_id: str | None = None) -> APIResponse:
    return APIResponse(success=True, data=data, meta=_meta(request_id))


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    return APIResponse(
        success=False,
        error=APIError(code=code, message=message),
        meta=_meta(request_id),
    )


def error_json(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    """error_response serialized into a JSONResponse with the given status."""
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, request_id_of(request)).model_dump(mode="json"),
    )
