"""
Request-scoped dependencies resolved from application state.
"""

from fastapi import Request

from ..core.database import DatabaseAdapter
from ..core.newsletters import PublishCoordinator
from ..core.outbox import DeadLetterManager


def get_db(request: Request) -> DatabaseAdapter:
    return request.app.state.db


def get_publish_coordinator(request: Request) -> PublishCoordinator:
    settings = request.app.state.settings
    return PublishCoordinator(
        request.app.state.db,
        lock_timeout_ms=settings.IDEMPOTENCY_LOCK_TIMEOUT_MS,
    )


def get_dead_letter_manager(request: Request) -> DeadLetterManager:
    return DeadLetterManager(request.app.state.db)
