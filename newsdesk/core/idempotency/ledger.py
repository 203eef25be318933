"""
Idempotency Ledger

Records, per (operator, idempotency key), the exact response of a request
so a retried request is answered by replay instead of re-execution.

The unique primary key on (operator_id, idempotency_key) is the admission
gate: the first transaction to insert the row owns the key, every other
transaction sees zero rows inserted.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from ..database import DatabaseAdapter, Transaction, rows_affected
from .models import (
    AlreadyExists,
    HttpOutcome,
    IdempotencyKey,
    ReservationResult,
    Reserved,
    SavedResponse,
)

logger = logging.getLogger(__name__)

_SELECT_SAVED = """
    SELECT response_status_code, response_headers, response_body
    FROM idempotency
    WHERE operator_id = $1 AND idempotency_key = $2
"""


def _saved_from_row(row) -> Optional[SavedResponse]:
    if row is None or row["response_status_code"] is None:
        return None
    return HttpOutcome.from_row(row)


async def try_reserve(
    txn: Transaction,
    operator_id: UUID,
    idempotency_key: IdempotencyKey,
) -> ReservationResult:
    """
    Claim the key inside the caller's transaction.

    A concurrent, uncommitted owner makes the insert wait; the wait is
    bounded by the transaction's lock timeout (LockNotAvailable).

    Returns:
        Reserved if this transaction now owns the key, AlreadyExists otherwise
    """
    status = await txn.execute(
        """
        INSERT INTO idempotency (operator_id, idempotency_key, created_at)
        VALUES ($1, $2, $3)
        ON CONFLICT DO NOTHING
        """,
        operator_id,
        idempotency_key.value,
        datetime.now(timezone.utc)
    )

    if rows_affected(status) > 0:
        logger.debug(f"Reserved idempotency key {idempotency_key} for operator {operator_id}")
        return Reserved()

    saved = _saved_from_row(await txn.fetchrow(_SELECT_SAVED, operator_id, idempotency_key.value))
    return AlreadyExists(saved_response=saved)


async def save_response(
    txn: Transaction,
    operator_id: UUID,
    idempotency_key: IdempotencyKey,
    outcome: HttpOutcome,
) -> HttpOutcome:
    """
    Finalise a reserved record with the response being returned.

    Must run in the transaction that reserved the key, so the saved response
    always matches the side effects that commit with it.
    """
    await txn.execute(
        """
        UPDATE idempotency
        SET response_status_code = $1,
            response_headers = $2,
            response_body = $3
        WHERE operator_id = $4 AND idempotency_key = $5
        """,
        outcome.status_code,
        outcome.headers_json(),
        outcome.body,
        operator_id,
        idempotency_key.value
    )
    return outcome


async def get_saved_response(
    db: Union[DatabaseAdapter, Transaction],
    operator_id: UUID,
    idempotency_key: IdempotencyKey,
) -> Optional[SavedResponse]:
    """Look up a committed response for the key, if any."""
    row = await db.fetchrow(_SELECT_SAVED, operator_id, idempotency_key.value)
    return _saved_from_row(row)
