"""
Shared Test Fixtures

Every test gets a fresh SQLite database with the schema migrated, and a
recording email client in place of the real email service.
"""

from typing import List, Optional, Set, Tuple
from uuid import uuid4

import pytest

from newsdesk.config import Settings
from newsdesk.core.database import DatabaseAdapter, DatabaseConfig
from newsdesk.core.email import SubscriberEmail
from newsdesk.core.errors import DeliveryTransportError
from newsdesk.core.newsletters import add_subscriber
from newsdesk.db.migrate import run_migrations


class RecordingEmailClient:
    """Email client double: records every call, fails on demand."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.failing: Set[str] = set()
        self.fail_all = False

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        self.calls.append((recipient.value, subject))
        if self.fail_all or recipient.value in self.failing:
            raise DeliveryTransportError(
                f"Email service returned 500 for {recipient}", status_code=500
            )

    def sent_to(self, email: str) -> int:
        return sum(1 for recipient, _ in self.calls if recipient == email)


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    monkeypatch.setenv("DATABASE_BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "newsdesk.db"))
    monkeypatch.setenv("AUTH_REQUIRED", "true")
    monkeypatch.setenv("DELIVERY_WORKER_ENABLED", "false")
    monkeypatch.setenv("EMAIL_AUTHORIZATION_TOKEN", "test-token")
    monkeypatch.setenv("EMAIL_SENDER", "newsletter@example.com")
    monkeypatch.setenv("LOG_STRUCTURED", "false")
    return Settings()


@pytest.fixture
async def db(settings):
    """Migrated database adapter."""
    adapter = DatabaseAdapter(DatabaseConfig.from_settings(settings))
    await adapter.connect()
    await run_migrations(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def email_client() -> RecordingEmailClient:
    return RecordingEmailClient()


@pytest.fixture
def operator_id():
    return uuid4()


@pytest.fixture
def subscribers(db):
    """Seed confirmed (and optionally unconfirmed) subscribers."""

    async def _seed(*emails: str, status: Optional[str] = None) -> List[str]:
        for email in emails:
            if status:
                await add_subscriber(db, email, email.split("@")[0], status=status)
            else:
                await add_subscriber(db, email, email.split("@")[0])
        return list(emails)

    return _seed
