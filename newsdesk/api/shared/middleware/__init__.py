"""
Shared API Middleware

- Error handling with standardized responses
- Operator authentication
"""

from .error_handler import register_error_handlers
from .auth import require_operator

__all__ = [
    "register_error_handlers",
    "require_operator",
]
