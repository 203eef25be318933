"""
Tests for the delivery worker.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from newsdesk.core.database import DatabaseAdapter, DatabaseConfig
from newsdesk.core.errors import StoreError
from newsdesk.core.newsletters import PublishCoordinator
from newsdesk.core.outbox import DeliveryWorker, TaskOutcome


async def _publish(db, operator_id, key: str = "issue", title: str = "T") -> None:
    await PublishCoordinator(db).publish(operator_id, key, title, "<p>x</p>", "x")


async def _queue(db):
    return await db.fetch(
        "SELECT subscriber_email, n_retries, execute_after FROM issue_delivery_queue "
        "ORDER BY subscriber_email"
    )


async def _dead_letters(db):
    return await db.fetch(
        "SELECT subscriber_email, n_retries, reason, last_error FROM issue_delivery_dead_letters "
        "ORDER BY subscriber_email"
    )


def _parse_time(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


class TestTryExecuteTask:
    """Test single iterations."""

    async def test_empty_queue(self, db, email_client):
        worker = DeliveryWorker(email_client, db=db)
        assert await worker.try_execute_task() == TaskOutcome.EMPTY_QUEUE
        assert email_client.calls == []

    async def test_delivers_each_subscriber(self, db, email_client, operator_id, subscribers):
        await subscribers("a@example.com", "b@example.com")
        await _publish(db, operator_id, title="Weekly")

        outcomes = await DeliveryWorker(email_client, db=db).drain()

        assert outcomes == {TaskOutcome.DELIVERED: 2, TaskOutcome.EMPTY_QUEUE: 1}
        assert sorted(email_client.calls) == [("a@example.com", "Weekly"), ("b@example.com", "Weekly")]
        assert await _queue(db) == []

    async def test_failure_reschedules_with_backoff(self, db, email_client, operator_id, subscribers):
        await subscribers("a@example.com")
        await _publish(db, operator_id)
        email_client.fail_all = True
        worker = DeliveryWorker(email_client, db=db, backoff_base_seconds=5)

        before = datetime.now(timezone.utc)
        assert await worker.try_execute_task() == TaskOutcome.FAILED

        [row] = await _queue(db)
        assert row["n_retries"] == 1
        assert _parse_time(row["execute_after"]) >= before + timedelta(seconds=10)

        # Not due yet
        assert await worker.try_execute_task() == TaskOutcome.EMPTY_QUEUE
        assert len(email_client.calls) == 1

    async def test_retry_ceiling_abandons_after_three_attempts(
        self, db, email_client, operator_id, subscribers
    ):
        await subscribers("a@example.com", "b@example.com")
        await _publish(db, operator_id)
        email_client.fail_all = True
        worker = DeliveryWorker(email_client, db=db, max_attempts=3, backoff_base_seconds=0)

        outcomes = await worker.drain()

        assert outcomes[TaskOutcome.FAILED] == 4
        assert outcomes[TaskOutcome.ABANDONED] == 2
        assert email_client.sent_to("a@example.com") == 3
        assert email_client.sent_to("b@example.com") == 3
        assert await _queue(db) == []

        dead = await _dead_letters(db)
        assert [d["reason"] for d in dead] == ["max_attempts_exceeded"] * 2
        assert [d["n_retries"] for d in dead] == [3, 3]
        assert "500" in dead[0]["last_error"]

    async def test_invalid_address_abandoned_without_sending(
        self, db, email_client, operator_id, subscribers
    ):
        await subscribers("not-an-email", "a@example.com")
        await _publish(db, operator_id)

        outcomes = await DeliveryWorker(email_client, db=db).drain()

        assert outcomes[TaskOutcome.ABANDONED] == 1
        assert outcomes[TaskOutcome.DELIVERED] == 1
        assert email_client.calls == [("a@example.com", "T")]
        [dead] = await _dead_letters(db)
        assert dead["subscriber_email"] == "not-an-email"
        assert dead["reason"] == "invalid_address"
        assert dead["n_retries"] == 0

    async def test_one_failing_subscriber_does_not_block_others(
        self, db, email_client, operator_id, subscribers
    ):
        await subscribers("a@example.com", "b@example.com", "c@example.com")
        await _publish(db, operator_id)
        email_client.failing.add("b@example.com")

        outcomes = await DeliveryWorker(email_client, db=db).drain()

        assert outcomes[TaskOutcome.DELIVERED] == 2
        assert outcomes[TaskOutcome.FAILED] == 1
        [row] = await _queue(db)
        assert row["subscriber_email"] == "b@example.com"

    async def test_missing_issue_is_abandoned(self, db, email_client):
        # SQLite does not enforce the foreign key without PRAGMA foreign_keys
        await db.execute(
            "INSERT INTO issue_delivery_queue (newsletter_issue_id, subscriber_email, n_retries, "
            "execute_after) VALUES ($1, $2, $3, $4)",
            uuid4(), "a@example.com", 0, datetime.now(timezone.utc)
        )

        assert await DeliveryWorker(email_client, db=db).try_execute_task() == TaskOutcome.ABANDONED
        assert email_client.calls == []
        [dead] = await _dead_letters(db)
        assert dead["reason"] == "issue_missing"

    async def test_send_timeout_counts_as_failure(self, db, operator_id, subscribers):
        await subscribers("a@example.com")
        await _publish(db, operator_id)

        class SlowEmailClient:
            async def send_email(self, recipient, subject, html_content, text_content):
                await asyncio.sleep(5)

        worker = DeliveryWorker(SlowEmailClient(), db=db, send_timeout=0.05)

        assert await worker.try_execute_task() == TaskOutcome.FAILED
        [row] = await _queue(db)
        assert row["n_retries"] == 1


    async def test_unexpected_sender_error_counts_as_attempt(self, db, operator_id, subscribers):
        await subscribers("a@example.com")
        await _publish(db, operator_id)

        class BrokenEmailClient:
            def __init__(self):
                self.calls = 0

            async def send_email(self, recipient, subject, html_content, text_content):
                self.calls += 1
                raise KeyError("template")

        sender = BrokenEmailClient()
        worker = DeliveryWorker(sender, db=db, max_attempts=3, backoff_base_seconds=0)

        assert await worker.try_execute_task() == TaskOutcome.FAILED
        [row] = await _queue(db)
        assert row["n_retries"] == 1

        outcomes = await worker.drain()

        assert outcomes[TaskOutcome.ABANDONED] == 1
        assert sender.calls == 3
        [dead] = await _dead_letters(db)
        assert dead["reason"] == "max_attempts_exceeded"
        assert "KeyError" in dead["last_error"]


class TestConcurrentWorkers:
    """Test several workers draining one queue."""

    async def test_each_task_delivered_exactly_once(self, db, email_client, operator_id, subscribers):
        emails = await subscribers(*[f"reader{i}@example.com" for i in range(12)])
        await _publish(db, operator_id)

        workers = [DeliveryWorker(email_client, db=db, name=f"w{i}") for i in range(3)]
        results = await asyncio.gather(*[worker.drain() for worker in workers])

        assert sum(r.get(TaskOutcome.DELIVERED, 0) for r in results) == 12
        assert all(email_client.sent_to(email) == 1 for email in emails)
        assert await _queue(db) == []

    async def test_pending_work_survives_worker_restart(
        self, db, settings, email_client, operator_id, subscribers
    ):
        emails = await subscribers("a@example.com", "b@example.com", "c@example.com")
        await _publish(db, operator_id)

        first = DeliveryWorker(email_client, db=db)
        assert await first.try_execute_task() == TaskOutcome.DELIVERED
        await db.disconnect()

        restarted_db = DatabaseAdapter(DatabaseConfig.from_settings(settings))
        await restarted_db.connect()
        try:
            outcomes = await DeliveryWorker(email_client, db=restarted_db).drain()
        finally:
            await restarted_db.disconnect()

        assert outcomes[TaskOutcome.DELIVERED] == 2
        assert all(email_client.sent_to(email) == 1 for email in emails)


class TestRunLoop:
    """Test the long-running loop."""

    async def test_start_drains_queue_and_stops(self, db, email_client, operator_id, subscribers):
        await subscribers("a@example.com", "b@example.com")
        await _publish(db, operator_id)

        worker = DeliveryWorker(email_client, db=db, poll_interval=0.05)
        await worker.start()
        assert worker.is_running

        for _ in range(100):
            if len(email_client.calls) == 2:
                break
            await asyncio.sleep(0.05)

        await asyncio.wait_for(worker.stop(), timeout=5)

        assert not worker.is_running
        assert len(email_client.calls) == 2

    async def test_loop_survives_store_errors(self, db, email_client):
        worker = DeliveryWorker(email_client, db=db, error_backoff=0.01, poll_interval=0.01)
        stop = asyncio.Event()
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StoreError("connection reset")
            if calls == 2:
                raise RuntimeError("unexpected")
            stop.set()
            return TaskOutcome.EMPTY_QUEUE

        worker.try_execute_task = flaky
        await asyncio.wait_for(worker.run_until_stopped(stop), timeout=5)

        assert calls == 3

    async def test_stop_interrupts_idle_sleep(self, db, email_client):
        worker = DeliveryWorker(email_client, db=db, poll_interval=60)
        await worker.start()
        await asyncio.sleep(0.1)

        await asyncio.wait_for(worker.stop(), timeout=5)

        assert not worker.is_running


@pytest.mark.parametrize("max_attempts", [1, 2])
async def test_configurable_attempt_ceiling(db, email_client, operator_id, subscribers, max_attempts):
    await subscribers("a@example.com")
    await _publish(db, operator_id)
    email_client.fail_all = True

    await DeliveryWorker(email_client, db=db, max_attempts=max_attempts, backoff_base_seconds=0).drain()

    assert email_client.sent_to("a@example.com") == max_attempts
