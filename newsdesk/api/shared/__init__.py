"""
Shared API Utilities

Common responses, errors and middleware for all API endpoints.
"""

from .responses import ErrorBody, ErrorDetail
from .error_codes import ErrorCode, get_status_code
from .exceptions import APIException, UnauthorizedError
from .middleware import register_error_handlers, require_operator

__all__ = [
    # Responses
    "ErrorBody",
    "ErrorDetail",
    # Error codes
    "ErrorCode",
    "get_status_code",
    # Exceptions
    "APIException",
    "UnauthorizedError",
    # Middleware
    "register_error_handlers",
    "require_operator",
]
