"""
Tests for idempotent newsletter publishing.
"""

import asyncio
import json

import pytest

from newsdesk.core.errors import ConflictInFlight, LockNotAvailable, StoreError, ValidationError
from newsdesk.core.idempotency import IdempotencyKey, try_reserve
from newsdesk.core.newsletters import PublishCoordinator
from newsdesk.core.newsletters.subscribers import PENDING_CONFIRMATION
from newsdesk.core.outbox import DeliveryWorker, TaskOutcome


async def _count(db, table: str) -> int:
    return int(await db.fetchval(f"SELECT COUNT(*) FROM {table}"))


async def _publish_key(db, operator_id, key: str):
    return await PublishCoordinator(db).publish(operator_id, key, "T", "<p>x</p>", "x")


@pytest.fixture
def coordinator(db):
    return PublishCoordinator(db, lock_timeout_ms=5000)


class TestPublish:
    """Test the accepted path."""

    async def test_publish_accepts_and_fans_out(self, db, coordinator, operator_id, subscribers):
        await subscribers("a@example.com", "b@example.com")
        await subscribers("pending@example.com", status=PENDING_CONFIRMATION)

        outcome = await coordinator.publish(operator_id, "issue-1", "T", "<p>Body</p>", "Body")

        assert outcome.status_code == 202
        assert outcome.headers == [("content-type", "application/json")]
        body = json.loads(outcome.body)
        assert body["status"] == "accepted"
        assert body["message"]

        issue = await db.fetchrow(
            "SELECT title, html_content, text_content FROM newsletter_issues "
            "WHERE newsletter_issue_id = $1",
            body["newsletter_issue_id"]
        )
        assert issue == {"title": "T", "html_content": "<p>Body</p>", "text_content": "Body"}

        rows = await db.fetch(
            "SELECT subscriber_email, n_retries FROM issue_delivery_queue ORDER BY subscriber_email"
        )
        assert rows == [
            {"subscriber_email": "a@example.com", "n_retries": 0},
            {"subscriber_email": "b@example.com", "n_retries": 0},
        ]

    async def test_publish_without_subscribers(self, db, coordinator, operator_id):
        outcome = await coordinator.publish(operator_id, "empty", "T", "<p>x</p>", "x")

        assert outcome.status_code == 202
        assert await _count(db, "newsletter_issues") == 1
        assert await _count(db, "issue_delivery_queue") == 0

    async def test_different_keys_publish_separately(self, db, coordinator, operator_id, subscribers):
        await subscribers("a@example.com")

        first = await coordinator.publish(operator_id, "key-1", "T", "<p>x</p>", "x")
        second = await coordinator.publish(operator_id, "key-2", "T", "<p>x</p>", "x")

        assert first.body != second.body
        assert await _count(db, "newsletter_issues") == 2
        assert await _count(db, "issue_delivery_queue") == 2


class TestIdempotentReplay:
    """Test that retries never re-execute."""

    async def test_retry_replays_saved_response(self, db, coordinator, operator_id, subscribers):
        await subscribers("a@example.com", "b@example.com")

        first = await coordinator.publish(operator_id, "retry", "T", "<p>x</p>", "x")
        second = await coordinator.publish(operator_id, "retry", "T", "<p>x</p>", "x")

        assert second == first
        assert await _count(db, "newsletter_issues") == 1
        assert await _count(db, "issue_delivery_queue") == 2

    async def test_replay_ignores_new_content(self, db, coordinator, operator_id):
        first = await coordinator.publish(operator_id, "retry", "T", "<p>x</p>", "x")
        replay = await coordinator.publish(operator_id, "retry", "", "", "")

        assert replay == first
        assert await _count(db, "newsletter_issues") == 1

    async def test_concurrent_identical_publishes(self, db, coordinator, operator_id, subscribers):
        await subscribers("a@example.com", "b@example.com", "c@example.com")

        outcomes = await asyncio.gather(*[
            coordinator.publish(operator_id, "burst", "T", "<p>x</p>", "x")
            for _ in range(5)
        ])

        assert len({(o.status_code, o.body) for o in outcomes}) == 1
        assert all(o.headers == outcomes[0].headers for o in outcomes)
        assert await _count(db, "newsletter_issues") == 1
        assert await _count(db, "issue_delivery_queue") == 3

    async def test_two_near_simultaneous_calls_deliver_once(
        self, db, coordinator, operator_id, subscribers, email_client
    ):
        """Key "abc", title "T": same answer twice, one email per subscriber."""
        emails = await subscribers("a@example.com", "b@example.com")

        first, second = await asyncio.gather(
            coordinator.publish(operator_id, "abc", "T", "<p>x</p>", "x"),
            coordinator.publish(operator_id, "abc", "T", "<p>x</p>", "x"),
        )

        assert first.status_code == second.status_code == 202
        assert first.body == second.body

        await DeliveryWorker(email_client, db=db).drain()

        assert sorted(email_client.calls) == sorted((email, "T") for email in emails)


class TestValidation:
    """Test malformed input is rejected with no side effects."""

    @pytest.mark.parametrize("key", ["", "x" * 51])
    async def test_malformed_key(self, db, coordinator, operator_id, key):
        with pytest.raises(ValidationError):
            await coordinator.publish(operator_id, key, "T", "<p>x</p>", "x")
        assert await _count(db, "idempotency") == 0

    @pytest.mark.parametrize("title,html,text,field", [
        ("", "<p>x</p>", "x", "title"),
        ("T", "", "x", "html"),
        ("T", "<p>x</p>", "   ", "text"),
    ])
    async def test_empty_content(self, db, coordinator, operator_id, title, html, text, field):
        with pytest.raises(ValidationError) as exc_info:
            await coordinator.publish(operator_id, "invalid", title, html, text)

        assert exc_info.value.field == field
        assert await _count(db, "idempotency") == 0
        assert await _count(db, "newsletter_issues") == 0


class TestAtomicity:
    """Test that an interrupted publish leaves nothing behind."""

    async def test_failure_before_commit_rolls_back(
        self, db, coordinator, operator_id, subscribers, monkeypatch
    ):
        await subscribers("a@example.com")

        async def explode(*args, **kwargs):
            raise RuntimeError("connection lost mid-publish")

        monkeypatch.setattr("newsdesk.core.newsletters.publisher.enqueue_delivery_tasks", explode)

        with pytest.raises(RuntimeError):
            await coordinator.publish(operator_id, "atomic", "T", "<p>x</p>", "x")

        assert await _count(db, "idempotency") == 0
        assert await _count(db, "newsletter_issues") == 0
        assert await _count(db, "issue_delivery_queue") == 0

        monkeypatch.undo()
        outcome = await coordinator.publish(operator_id, "atomic", "T", "<p>x</p>", "x")

        assert outcome.status_code == 202
        assert await _count(db, "issue_delivery_queue") == 1


class TestConflictInFlight:
    """Test a key whose owner has not stored a response."""

    async def test_reservation_without_response_conflicts(self, db, operator_id):
        async with db.transaction() as txn:
            await try_reserve(txn, operator_id, IdempotencyKey.parse("busy"))
        coordinator = PublishCoordinator(db, lock_timeout_ms=200, retry_after_seconds=1)

        with pytest.raises(ConflictInFlight) as exc_info:
            await coordinator.publish(operator_id, "busy", "T", "<p>x</p>", "x")

        assert exc_info.value.retry_after_seconds == 1
        assert exc_info.value.idempotency_key == "busy"
        assert await _count(db, "newsletter_issues") == 0


class TestStoreContention:
    """Test that waiting on the SQLite write lock is not reported as a key conflict."""

    async def test_held_write_lock_is_store_error(self, db, operator_id):
        coordinator = PublishCoordinator(db, lock_timeout_ms=200)

        with pytest.raises(RuntimeError):
            async with db.transaction() as txn:
                await try_reserve(txn, operator_id, IdempotencyKey.parse("busy"))

                with pytest.raises(StoreError) as exc_info:
                    await coordinator.publish(operator_id, "busy", "T", "<p>x</p>", "x")

                raise RuntimeError("holder aborts")

        assert not isinstance(exc_info.value, LockNotAvailable)

        outcome = await coordinator.publish(operator_id, "busy", "T", "<p>x</p>", "x")
        assert outcome.status_code == 202

    async def test_fresh_key_during_slow_delivery(self, db, operator_id, subscribers):
        await subscribers("a@example.com")
        await _publish_key(db, operator_id, "first")
        sending = asyncio.Event()

        class SlowEmailClient:
            async def send_email(self, recipient, subject, html_content, text_content):
                sending.set()
                await asyncio.sleep(1)

        worker = DeliveryWorker(SlowEmailClient(), db=db)
        delivery = asyncio.create_task(worker.try_execute_task())
        await asyncio.wait_for(sending.wait(), timeout=5)

        coordinator = PublishCoordinator(db, lock_timeout_ms=200)
        with pytest.raises(StoreError) as exc_info:
            await coordinator.publish(operator_id, "brand-new-key", "T", "<p>x</p>", "x")

        assert not isinstance(exc_info.value, LockNotAvailable)
        assert await delivery == TaskOutcome.DELIVERED

        outcome = await coordinator.publish(operator_id, "brand-new-key", "T", "<p>x</p>", "x")
        assert outcome.status_code == 202
