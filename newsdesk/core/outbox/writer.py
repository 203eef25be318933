"""
Outbox Writer

Writes one delivery task per subscriber within the same transaction as the
publish that triggers them, so "request accepted" and "all deliveries
scheduled" commit together or not at all.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from ..database import Transaction
from ..observability import record_counter

logger = logging.getLogger(__name__)


async def enqueue_delivery_tasks(
    txn: Transaction,
    newsletter_issue_id: UUID,
    subscriber_emails: Iterable[str],
    now: Optional[datetime] = None,
) -> int:
    """
    Insert one pending task per distinct subscriber address.

    Args:
        txn: The caller's open transaction
        newsletter_issue_id: Issue being delivered
        subscriber_emails: Recipient addresses as stored
        now: Earliest execution time (defaults to the current time)

    Returns:
        Number of tasks written
    """
    execute_after = now or datetime.now(timezone.utc)
    emails = list(dict.fromkeys(subscriber_emails))

    await txn.executemany(
        """
        INSERT INTO issue_delivery_queue (
            newsletter_issue_id, subscriber_email, n_retries, execute_after
        ) VALUES ($1, $2, $3, $4)
        """,
        [(newsletter_issue_id, email, 0, execute_after) for email in emails]
    )

    record_counter("newsletter_deliveries_enqueued_total", len(emails))
    logger.debug(
        "Enqueued delivery tasks: issue=%s count=%d", newsletter_issue_id, len(emails)
    )
    return len(emails)
