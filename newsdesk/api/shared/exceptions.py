"""
API Exception Classes

Exceptions raised by the HTTP layer itself. Core errors
(newsdesk.core.errors) are mapped by the error handler directly.
"""

from typing import Dict, List, Optional

from .error_codes import ErrorCode, get_status_code
from .responses import ErrorDetail

BASIC_AUTH_CHALLENGE = 'Basic realm="publish"'


class APIException(Exception):
    """
    Base exception for API errors.

    The error handler middleware catches these and returns standardized
    error responses.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[List[ErrorDetail]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers
        self.status_code = get_status_code(code)
        super().__init__(message)


class UnauthorizedError(APIException):
    """
    Authentication required error.

    HTTP Status: 401, with a Basic challenge.
    """

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            code=ErrorCode.UNAUTHORIZED,
            message=message,
            headers={"WWW-Authenticate": BASIC_AUTH_CHALLENGE},
        )
