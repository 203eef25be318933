"""
Publish Coordinator

Ties the idempotency ledger and the outbox together. A publish either
commits the issue, its full delivery fan-out and the saved response in one
transaction, or leaves no trace. Retries with the same idempotency key get
the saved response back byte-for-byte.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from ..database import DatabaseAdapter, Transaction, get_database
from ..errors import ConflictInFlight, LockNotAvailable, ValidationError
from ..idempotency import (
    AlreadyExists,
    HttpOutcome,
    IdempotencyKey,
    get_saved_response,
    save_response,
    try_reserve,
)
from ..observability import create_span, record_counter
from ..outbox.writer import enqueue_delivery_tasks
from .models import NewsletterIssue
from .subscribers import list_confirmed_subscriber_emails

logger = logging.getLogger(__name__)

ACCEPTED_STATUS = 202
ACCEPTED_MESSAGE = "The newsletter issue has been accepted - emails will go out shortly."


def _validate_content(title: str, html_body: str, text_body: str) -> None:
    for field_name, value in (("title", title), ("html", html_body), ("text", text_body)):
        if value is None or not value.strip():
            raise ValidationError(f"The newsletter {field_name} cannot be empty", field=field_name)


def accepted_outcome(issue: NewsletterIssue) -> HttpOutcome:
    """The response returned, and saved, for a freshly accepted issue."""
    body = json.dumps({
        "newsletter_issue_id": str(issue.newsletter_issue_id),
        "status": "accepted",
        "message": ACCEPTED_MESSAGE,
    }).encode("utf-8")
    return HttpOutcome(
        status_code=ACCEPTED_STATUS,
        headers=[("content-type", "application/json")],
        body=body,
    )


class PublishCoordinator:
    """
    Handles publish requests.

    Usage:
        coordinator = PublishCoordinator(db, lock_timeout_ms=2000)
        outcome = await coordinator.publish(operator_id, "key-1", "Title", "<p>hi</p>", "hi")
        # outcome.status_code, outcome.headers, outcome.body
    """

    def __init__(
        self,
        db: Optional[DatabaseAdapter] = None,
        lock_timeout_ms: int = 2000,
        retry_after_seconds: int = 1,
    ):
        self._db = db
        self.lock_timeout_ms = lock_timeout_ms
        self.retry_after_seconds = retry_after_seconds

    async def _get_db(self) -> DatabaseAdapter:
        if self._db is None:
            self._db = await get_database()
        return self._db

    async def publish(
        self,
        operator_id: UUID,
        idempotency_key: str,
        title: str,
        html_body: str,
        text_body: str,
    ) -> HttpOutcome:
        """
        Publish an issue to every confirmed subscriber, at most once per key.

        Raises:
            ValidationError: malformed key or content; nothing persisted
            ConflictInFlight: same key held by a request that has not committed
            StoreError: transient store failure; nothing persisted
        """
        key = IdempotencyKey.parse(idempotency_key)
        db = await self._get_db()

        with create_span("publish_newsletter", {"operator_id": str(operator_id)}) as span:
            saved = await get_saved_response(db, operator_id, key)
            if saved is not None:
                return self._replay(operator_id, key, saved)

            _validate_content(title, html_body, text_body)

            async with db.transaction(lock_timeout_ms=self.lock_timeout_ms) as txn:
                # Only a wait on the key's own row means another request holds it
                try:
                    reservation = await try_reserve(txn, operator_id, key)
                except LockNotAvailable as e:
                    raise self._conflict(operator_id, key) from e

                if isinstance(reservation, AlreadyExists):
                    if reservation.saved_response is None:
                        raise self._conflict(operator_id, key)
                    return self._replay(operator_id, key, reservation.saved_response)

                issue = NewsletterIssue(
                    title=title,
                    html_content=html_body,
                    text_content=text_body,
                )
                recipients = await self._insert_issue_and_fan_out(txn, issue)
                outcome = await save_response(txn, operator_id, key, accepted_outcome(issue))

            span.set_attribute("newsletter_issue_id", str(issue.newsletter_issue_id))
            span.set_attribute("recipients", recipients)

        record_counter("newsletter_publish_total", 1, {"outcome": "accepted"})
        logger.info(
            f"Newsletter issue accepted: issue={issue.newsletter_issue_id} "
            f"recipients={recipients} operator={operator_id}"
        )
        return outcome

    async def _insert_issue_and_fan_out(self, txn: Transaction, issue: NewsletterIssue) -> int:
        await txn.execute(
            """
            INSERT INTO newsletter_issues (
                newsletter_issue_id, title, text_content, html_content, published_at
            ) VALUES ($1, $2, $3, $4, $5)
            """,
            issue.newsletter_issue_id,
            issue.title,
            issue.text_content,
            issue.html_content,
            issue.published_at
        )
        emails = await list_confirmed_subscriber_emails(txn)
        return await enqueue_delivery_tasks(
            txn, issue.newsletter_issue_id, emails, now=datetime.now(timezone.utc)
        )

    def _replay(self, operator_id: UUID, key: IdempotencyKey, saved: HttpOutcome) -> HttpOutcome:
        record_counter("newsletter_publish_total", 1, {"outcome": "replayed"})
        logger.info(f"Replaying saved response for idempotency key {key} (operator {operator_id})")
        return saved

    def _conflict(self, operator_id: UUID, key: IdempotencyKey) -> ConflictInFlight:
        record_counter("newsletter_publish_total", 1, {"outcome": "conflict"})
        logger.warning(f"Idempotency key {key} is still in flight for operator {operator_id}")
        return ConflictInFlight(key.value, retry_after_seconds=self.retry_after_seconds)
