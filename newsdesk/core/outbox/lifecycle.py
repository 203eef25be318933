"""
Delivery Worker Lifecycle

Runs delivery workers inside the API process, started and stopped with the
FastAPI application lifespan.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..database import DatabaseAdapter
from ..email import EmailClient
from .worker import DeliveryWorker, EmailSender

logger = logging.getLogger(__name__)


async def start_delivery_workers(
    db: DatabaseAdapter,
    settings,
    email_client: EmailSender,
    count: Optional[int] = None,
) -> List[DeliveryWorker]:
    """Create and start `count` workers (DELIVERY_WORKERS by default)."""
    count = count or settings.DELIVERY_WORKERS
    workers = [
        DeliveryWorker.from_settings(settings, email_client, db=db, name=f"delivery-worker-{i + 1}")
        for i in range(count)
    ]
    for worker in workers:
        await worker.start()
    return workers


async def stop_delivery_workers(workers: List[DeliveryWorker]) -> None:
    """Stop workers; each finishes the task it holds before returning."""
    for worker in workers:
        await worker.stop()


@asynccontextmanager
async def delivery_workers_lifespan(
    db: DatabaseAdapter,
    settings,
    email_client: Optional[EmailSender] = None,
) -> AsyncIterator[List[DeliveryWorker]]:
    """
    Lifespan context manager for in-process delivery workers.

    Usage in FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with delivery_workers_lifespan(db, settings):
                yield
    """
    if not settings.DELIVERY_WORKER_ENABLED:
        logger.info("Delivery workers disabled: DELIVERY_WORKER_ENABLED=false")
        yield []
        return

    owned_client = email_client is None
    client = EmailClient.from_settings(settings) if owned_client else email_client

    logger.info(f"Starting {settings.DELIVERY_WORKERS} delivery worker(s)...")
    workers = await start_delivery_workers(db, settings, client)
    try:
        yield workers
    finally:
        logger.info("Stopping delivery workers...")
        await stop_delivery_workers(workers)
        if owned_client:
            await client.aclose()
