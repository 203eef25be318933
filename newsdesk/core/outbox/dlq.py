"""
Dead Letter Management

Abandoned delivery tasks leave the live queue and land in
issue_delivery_dead_letters, where an operator can inspect and requeue them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from ..database import DatabaseAdapter, Transaction, get_database
from .models import DeadLetterEntry, DeadLetterReason, DeliveryTask

logger = logging.getLogger(__name__)


async def record_dead_letter(
    txn: Transaction,
    task: DeliveryTask,
    reason: Union[DeadLetterReason, str],
    last_error: Optional[str],
    n_retries: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Record an abandoned task. Runs in the worker's transaction so the queue
    row removal and the dead-letter row commit together.
    """
    reason_value = reason.value if isinstance(reason, DeadLetterReason) else reason
    await txn.execute(
        """
        INSERT INTO issue_delivery_dead_letters (
            newsletter_issue_id, subscriber_email, n_retries, reason, last_error, abandoned_at
        ) VALUES ($1, $2, $3, $4, $5, $6)
        ON CONFLICT (newsletter_issue_id, subscriber_email) DO UPDATE
        SET n_retries = excluded.n_retries,
            reason = excluded.reason,
            last_error = excluded.last_error,
            abandoned_at = excluded.abandoned_at
        """,
        task.newsletter_issue_id,
        task.subscriber_email,
        task.n_retries if n_retries is None else n_retries,
        reason_value,
        last_error,
        now or datetime.now(timezone.utc)
    )


class DeadLetterManager:
    """
    Manages abandoned deliveries.

    Responsibilities:
    - Query dead-letter entries
    - Requeue entries for another round of attempts
    - Report queue depth
    """

    def __init__(self, db: Optional[DatabaseAdapter] = None):
        self._db = db

    async def _get_db(self) -> DatabaseAdapter:
        if self._db is None:
            self._db = await get_database()
        return self._db

    async def list_entries(
        self,
        limit: int = 100,
        offset: int = 0,
        newsletter_issue_id: Optional[UUID] = None,
    ) -> List[DeadLetterEntry]:
        """Get dead-letter entries, most recently abandoned first."""
        db = await self._get_db()

        if newsletter_issue_id:
            rows = await db.fetch(
                """
                SELECT newsletter_issue_id, subscriber_email, n_retries, reason,
                       last_error, abandoned_at
                FROM issue_delivery_dead_letters
                WHERE newsletter_issue_id = $1
                ORDER BY abandoned_at DESC, subscriber_email
                LIMIT $2 OFFSET $3
                """,
                newsletter_issue_id, limit, offset
            )
        else:
            rows = await db.fetch(
                """
                SELECT newsletter_issue_id, subscriber_email, n_retries, reason,
                       last_error, abandoned_at
                FROM issue_delivery_dead_letters
                ORDER BY abandoned_at DESC, subscriber_email
                LIMIT $1 OFFSET $2
                """,
                limit, offset
            )

        return [DeadLetterEntry.from_row(row) for row in rows]

    async def count(self, newsletter_issue_id: Optional[UUID] = None) -> int:
        """Get total dead-letter entry count."""
        db = await self._get_db()

        if newsletter_issue_id:
            result = await db.fetchval(
                "SELECT COUNT(*) FROM issue_delivery_dead_letters WHERE newsletter_issue_id = $1",
                newsletter_issue_id
            )
        else:
            result = await db.fetchval("SELECT COUNT(*) FROM issue_delivery_dead_letters")

        return int(result or 0)

    async def requeue(
        self,
        newsletter_issue_id: UUID,
        subscriber_email: Optional[str] = None,
        operator_id: Optional[UUID] = None,
    ) -> int:
        """
        Move dead letters back into the live queue with a fresh retry budget.

        Entries whose issue no longer exists stay where they are.

        Returns:
            Number of tasks requeued
        """
        db = await self._get_db()
        now = datetime.now(timezone.utc)

        async with db.transaction() as txn:
            query = """
                SELECT d.newsletter_issue_id, d.subscriber_email
                FROM issue_delivery_dead_letters d
                JOIN newsletter_issues i ON i.newsletter_issue_id = d.newsletter_issue_id
                WHERE d.newsletter_issue_id = $1
            """
            args: List[Any] = [newsletter_issue_id]
            if subscriber_email is not None:
                query += " AND d.subscriber_email = $2"
                args.append(subscriber_email)

            rows = await txn.fetch(query, *args)
            if not rows:
                return 0

            await txn.executemany(
                """
                INSERT INTO issue_delivery_queue (
                    newsletter_issue_id, subscriber_email, n_retries, execute_after
                ) VALUES ($1, $2, $3, $4)
                ON CONFLICT (newsletter_issue_id, subscriber_email) DO NOTHING
                """,
                [(newsletter_issue_id, row["subscriber_email"], 0, now) for row in rows]
            )
            await txn.executemany(
                """
                DELETE FROM issue_delivery_dead_letters
                WHERE newsletter_issue_id = $1 AND subscriber_email = $2
                """,
                [(newsletter_issue_id, row["subscriber_email"]) for row in rows]
            )

        logger.info(
            f"Requeued {len(rows)} dead-lettered deliveries of issue {newsletter_issue_id} "
            f"by {operator_id}"
        )
        return len(rows)

    async def queue_stats(self) -> Dict[str, int]:
        """Live queue depth, tasks due now, and dead-letter count."""
        db = await self._get_db()

        async with db.transaction(immediate=False) as txn:
            pending = await txn.fetchval("SELECT COUNT(*) FROM issue_delivery_queue")
            due = await txn.fetchval(
                "SELECT COUNT(*) FROM issue_delivery_queue WHERE execute_after <= $1",
                datetime.now(timezone.utc)
            )
            dead_letters = await txn.fetchval("SELECT COUNT(*) FROM issue_delivery_dead_letters")

        return {
            "pending": int(pending or 0),
            "due": int(due or 0),
            "dead_letters": int(dead_letters or 0),
        }
