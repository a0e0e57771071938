"""HTTP plumbing shared by the routers."""

from api.base import (
    APIResponse,
    ErrorCodes,
    error_json,
    error_response,
    request_id_of,
    success_response,
)
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
