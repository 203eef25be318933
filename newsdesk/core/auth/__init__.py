"""
Operator authentication.
"""

from .operator import (
    Operator,
    authenticate_operator,
    create_operator,
    hash_password,
    verify_password,
)

__all__ = [
    "Operator",
    "authenticate_operator",
    "create_operator",
    "hash_password",
    "verify_password",
]
