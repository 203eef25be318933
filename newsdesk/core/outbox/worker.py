"""
Delivery Worker

Background loop that drains issue_delivery_queue one task per iteration,
sends the email and records the result in the same transaction that holds
the task's row lock. Any number of workers may run side by side: rows locked
by one worker are skipped by the others (FOR UPDATE SKIP LOCKED).
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

from ..database import DatabaseAdapter, Transaction, get_database
from ..email import SubscriberEmail
from ..errors import DeliveryTransportError, StoreError, ValidationError
from ..newsletters.models import NewsletterIssue
from ..observability import create_span, record_counter, record_histogram
from .dlq import record_dead_letter
from .models import DeadLetterReason, DeliveryTask, TaskOutcome

logger = logging.getLogger(__name__)

_DEQUEUE = """
    SELECT newsletter_issue_id, subscriber_email, n_retries, execute_after
    FROM issue_delivery_queue
    WHERE execute_after <= $1
    ORDER BY execute_after
    LIMIT 1
    FOR UPDATE SKIP LOCKED
"""


class EmailSender(Protocol):
    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        ...


def next_backoff_seconds(n_retries: int, base_seconds: int = 5, max_seconds: int = 300) -> int:
    delay = base_seconds * (2 ** max(0, n_retries))
    return int(min(max_seconds, delay))


class DeliveryWorker:
    """
    Delivers queued newsletter emails.

    Features:
    - Non-blocking reservation of one due task per iteration
    - Exponential backoff between attempts
    - Abandons tasks after max_attempts, or at once for unusable addresses,
      recording them in the dead-letter table
    - Survives store errors and unexpected exceptions without exiting
    """

    def __init__(
        self,
        email_client: EmailSender,
        db: Optional[DatabaseAdapter] = None,
        max_attempts: int = 3,
        poll_interval: float = 10.0,
        error_backoff: float = 1.0,
        backoff_base_seconds: int = 5,
        backoff_max_seconds: int = 300,
        send_timeout: Optional[float] = None,
        name: str = "delivery-worker",
    ):
        self.email_client = email_client
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.send_timeout = send_timeout
        self.name = name
        self._db = db
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, email_client: EmailSender, db: Optional[DatabaseAdapter] = None,
                      name: str = "delivery-worker") -> "DeliveryWorker":
        return cls(
            email_client=email_client,
            db=db,
            max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
            poll_interval=settings.DELIVERY_POLL_INTERVAL,
            error_backoff=settings.DELIVERY_ERROR_BACKOFF,
            backoff_base_seconds=settings.DELIVERY_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.DELIVERY_BACKOFF_MAX_SECONDS,
            send_timeout=settings.email_timeout_seconds,
            name=name,
        )

    async def _get_db(self) -> DatabaseAdapter:
        if self._db is None:
            self._db = await get_database()
        return self._db

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the worker loop as a background task."""
        if self.is_running:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run_until_stopped(self._stop_event))
        logger.info(f"{self.name} started")

    async def stop(self):
        """Ask the loop to finish its current iteration, then wait for it."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info(f"{self.name} stopped")

    async def run_until_stopped(self, stop_event: asyncio.Event) -> None:
        """Main processing loop."""
        while not stop_event.is_set():
            try:
                outcome = await self.try_execute_task()
            except StoreError as e:
                logger.error(f"{self.name}: transient store error, task left untouched: {e}")
                await self._pause(stop_event, self.error_backoff)
                continue
            except Exception as e:
                logger.error(f"{self.name}: unexpected error: {e}", exc_info=True)
                await self._pause(stop_event, self.error_backoff)
                continue

            if outcome == TaskOutcome.EMPTY_QUEUE:
                await self._pause(stop_event, self.poll_interval)

    async def drain(self, max_iterations: Optional[int] = None) -> Dict[TaskOutcome, int]:
        """
        Run iterations back to back until the queue has nothing due.

        Returns:
            Count of each outcome observed, the final EMPTY_QUEUE included
        """
        outcomes: Counter = Counter()
        iterations = 0
        while max_iterations is None or iterations < max_iterations:
            outcome = await self.try_execute_task()
            outcomes[outcome] += 1
            iterations += 1
            if outcome == TaskOutcome.EMPTY_QUEUE:
                break
        return dict(outcomes)

    async def try_execute_task(self) -> TaskOutcome:
        """
        Attempt one due task.

        Raises:
            StoreError: the transaction failed; no task state changed
        """
        db = await self._get_db()
        started = time.monotonic()

        with create_span("deliver_newsletter_task", {"worker": self.name}) as span:
            async with db.transaction() as txn:
                row = await txn.fetchrow(_DEQUEUE, datetime.now(timezone.utc))
                if row is None:
                    return TaskOutcome.EMPTY_QUEUE

                task = DeliveryTask.from_row(row)
                span.set_attribute("newsletter_issue_id", str(task.newsletter_issue_id))
                span.set_attribute("n_retries", task.n_retries)

                outcome = await self._execute(txn, task)

            span.set_attribute("outcome", outcome.value)

        record_counter("delivery_attempts_total", 1, {"outcome": outcome.value})
        record_histogram("delivery_attempt_duration_seconds", time.monotonic() - started)
        return outcome

    async def _execute(self, txn: Transaction, task: DeliveryTask) -> TaskOutcome:
        issue_row = await txn.fetchrow(
            """
            SELECT newsletter_issue_id, title, text_content, html_content, published_at
            FROM newsletter_issues
            WHERE newsletter_issue_id = $1
            """,
            task.newsletter_issue_id
        )
        if issue_row is None:
            return await self._abandon(
                txn, task, DeadLetterReason.ISSUE_MISSING,
                f"Newsletter issue {task.newsletter_issue_id} does not exist"
            )
        issue = NewsletterIssue.from_row(issue_row)

        try:
            recipient = SubscriberEmail.parse(task.subscriber_email)
        except ValidationError as e:
            logger.warning(
                f"Skipping a confirmed subscriber: their stored contact details are invalid "
                f"(issue={task.newsletter_issue_id}): {e}"
            )
            return await self._abandon(txn, task, DeadLetterReason.INVALID_ADDRESS, str(e))

        try:
            await self._send(recipient, issue)
        except DeliveryTransportError as e:
            return await self._handle_failure(txn, task, str(e))
        except asyncio.TimeoutError:
            return await self._handle_failure(
                txn, task, f"Email delivery timed out after {self.send_timeout}s"
            )
        except Exception as e:
            # Counted as an attempt so a task that always raises still hits the ceiling
            logger.error(f"{self.name}: email sender raised unexpectedly: {e}", exc_info=True)
            return await self._handle_failure(txn, task, f"{type(e).__name__}: {e}")

        await self._delete_task(txn, task)
        logger.info(f"Delivered issue {task.newsletter_issue_id} to {task.subscriber_email}")
        return TaskOutcome.DELIVERED

    async def _send(self, recipient: SubscriberEmail, issue: NewsletterIssue) -> None:
        send = self.email_client.send_email(
            recipient, issue.title, issue.html_content, issue.text_content
        )
        if self.send_timeout:
            await asyncio.wait_for(send, timeout=self.send_timeout)
        else:
            await send

    async def _handle_failure(self, txn: Transaction, task: DeliveryTask, error: str) -> TaskOutcome:
        attempts = task.n_retries + 1

        if attempts >= self.max_attempts:
            return await self._abandon(
                txn, task, DeadLetterReason.MAX_ATTEMPTS_EXCEEDED, error, n_retries=attempts
            )

        next_attempt = datetime.now(timezone.utc) + timedelta(
            seconds=next_backoff_seconds(attempts, self.backoff_base_seconds, self.backoff_max_seconds)
        )
        await txn.execute(
            """
            UPDATE issue_delivery_queue
            SET n_retries = $1, execute_after = $2
            WHERE newsletter_issue_id = $3 AND subscriber_email = $4
            """,
            attempts,
            next_attempt,
            task.newsletter_issue_id,
            task.subscriber_email
        )
        logger.warning(
            f"Delivery of issue {task.newsletter_issue_id} to {task.subscriber_email} failed "
            f"(attempt {attempts}/{self.max_attempts}), retry at {next_attempt.isoformat()}: {error}"
        )
        return TaskOutcome.FAILED

    async def _abandon(
        self,
        txn: Transaction,
        task: DeliveryTask,
        reason: DeadLetterReason,
        error: str,
        n_retries: Optional[int] = None,
    ) -> TaskOutcome:
        await self._delete_task(txn, task)
        await record_dead_letter(
            txn, task, reason, error,
            n_retries=task.n_retries if n_retries is None else n_retries
        )
        record_counter("delivery_dead_letters_total", 1, {"reason": reason.value})
        logger.warning(
            f"Abandoned delivery of issue {task.newsletter_issue_id} to {task.subscriber_email} "
            f"({reason.value}): {error}"
        )
        return TaskOutcome.ABANDONED

    @staticmethod
    async def _delete_task(txn: Transaction, task: DeliveryTask) -> None:
        await txn.execute(
            """
            DELETE FROM issue_delivery_queue
            WHERE newsletter_issue_id = $1 AND subscriber_email = $2
            """,
            task.newsletter_issue_id,
            task.subscriber_email
        )

    @staticmethod
    async def _pause(stop_event: asyncio.Event, seconds: float) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
