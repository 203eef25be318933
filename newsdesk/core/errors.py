"""
Error Taxonomy

Exceptions raised by the publishing and delivery core. The API layer maps
them to HTTP responses; the delivery worker handles them internally.
"""

from typing import Optional


class NewsdeskError(Exception):
    """Base class for all newsdesk errors."""


class ValidationError(NewsdeskError):
    """
    Malformed input.

    Raised before anything is persisted; the caller may retry with
    corrected input.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ConflictInFlight(NewsdeskError):
    """
    Another request holding the same idempotency key has not finished yet.

    Retryable: once the other request commits, a retry observes its saved
    response.
    """

    def __init__(self, idempotency_key: str, retry_after_seconds: int = 1):
        super().__init__(
            f"A request with idempotency key '{idempotency_key}' is still being processed"
        )
        self.idempotency_key = idempotency_key
        self.retry_after_seconds = retry_after_seconds


class StoreError(NewsdeskError):
    """Transient failure of the transactional store."""


class LockNotAvailable(StoreError):
    """A lock wait exceeded its bound."""


class DeliveryTransportError(NewsdeskError):
    """The email service rejected the request, failed or timed out."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
