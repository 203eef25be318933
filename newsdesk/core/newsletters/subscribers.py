"""
Subscriber directory.

Sign-up and confirmation live elsewhere; publishing only needs the
addresses of confirmed subscribers.
"""

from datetime import datetime, timezone
from typing import List
from uuid import uuid4

from ..database import DatabaseAdapter, Transaction

CONFIRMED = "confirmed"
PENDING_CONFIRMATION = "pending_confirmation"


async def list_confirmed_subscriber_emails(txn: Transaction) -> List[str]:
    """
    Addresses of every confirmed subscriber, as stored.

    Read inside the publish transaction so the fan-out is taken from one
    consistent snapshot. Addresses are not validated here; the delivery
    worker abandons the ones that do not parse.
    """
    rows = await txn.fetch(
        "SELECT email FROM subscriptions WHERE status = $1 ORDER BY email",
        CONFIRMED
    )
    return [row["email"] for row in rows]


async def add_subscriber(
    db: DatabaseAdapter,
    email: str,
    name: str,
    status: str = CONFIRMED,
) -> None:
    """Insert a subscription row (seeding and tests)."""
    await db.execute(
        """
        INSERT INTO subscriptions (id, email, name, status, subscribed_at)
        VALUES ($1, $2, $3, $4, $5)
        """,
        uuid4(),
        email,
        name,
        status,
        datetime.now(timezone.utc)
    )
