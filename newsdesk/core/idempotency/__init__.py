"""
Idempotency Ledger

Usage:
    from newsdesk.core.idempotency import IdempotencyKey, try_reserve, save_response

    key = IdempotencyKey.parse(request.headers.get("Idempotency-Key"))

    async with db.transaction(lock_timeout_ms=2000) as txn:
        result = await try_reserve(txn, operator_id, key)
        if isinstance(result, Reserved):
            ...  # side effects
            await save_response(txn, operator_id, key, outcome)
"""

from .ledger import get_saved_response, save_response, try_reserve
from .models import (
    AlreadyExists,
    HttpOutcome,
    IdempotencyKey,
    ReservationResult,
    Reserved,
    SavedResponse,
)

__all__ = [
    "IdempotencyKey",
    "HttpOutcome",
    "SavedResponse",
    "Reserved",
    "AlreadyExists",
    "ReservationResult",
    "try_reserve",
    "save_response",
    "get_saved_response",
]
