"""
Transactional Delivery Outbox

Publishing writes one task per subscriber in the same transaction as the
issue; delivery workers drain the queue afterwards.

Usage:
    from newsdesk.core.outbox import DeliveryWorker

    worker = DeliveryWorker(email_client, db=db)
    outcome = await worker.try_execute_task()
"""

from .models import DeadLetterEntry, DeadLetterReason, DeliveryTask, TaskOutcome
from .writer import enqueue_delivery_tasks
from .dlq import DeadLetterManager, record_dead_letter
from .worker import DeliveryWorker, next_backoff_seconds
from .lifecycle import delivery_workers_lifespan, start_delivery_workers, stop_delivery_workers

__all__ = [
    "DeadLetterEntry",
    "DeadLetterReason",
    "DeliveryTask",
    "TaskOutcome",
    "enqueue_delivery_tasks",
    "DeadLetterManager",
    "record_dead_letter",
    "DeliveryWorker",
    "next_backoff_seconds",
    "delivery_workers_lifespan",
    "start_delivery_workers",
    "stop_delivery_workers",
]
