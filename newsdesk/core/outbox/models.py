"""
Outbox Models
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class TaskOutcome(str, Enum):
    """Result of one worker iteration."""
    EMPTY_QUEUE = "empty_queue"
    DELIVERED = "delivered"
    FAILED = "failed"          # rescheduled with backoff
    ABANDONED = "abandoned"    # removed without delivery, dead-lettered


class DeadLetterReason(str, Enum):
    """Why a task was abandoned."""
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    INVALID_ADDRESS = "invalid_address"
    ISSUE_MISSING = "issue_missing"


@dataclass(frozen=True)
class DeliveryTask:
    """One outstanding delivery: row of issue_delivery_queue."""

    newsletter_issue_id: UUID
    subscriber_email: str
    n_retries: int = 0
    execute_after: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeliveryTask":
        return cls(
            newsletter_issue_id=UUID(str(row["newsletter_issue_id"])),
            subscriber_email=row["subscriber_email"],
            n_retries=int(row["n_retries"]),
            execute_after=row.get("execute_after"),
        )


@dataclass
class DeadLetterEntry:
    """An abandoned delivery task."""

    newsletter_issue_id: UUID
    subscriber_email: str
    n_retries: int
    reason: str
    last_error: Optional[str]
    abandoned_at: Any

    def to_dict(self) -> Dict[str, Any]:
        abandoned_at = self.abandoned_at
        if isinstance(abandoned_at, datetime):
            abandoned_at = abandoned_at.isoformat()
        return {
            "newsletter_issue_id": str(self.newsletter_issue_id),
            "subscriber_email": self.subscriber_email,
            "n_retries": self.n_retries,
            "reason": self.reason,
            "last_error": self.last_error,
            "abandoned_at": abandoned_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeadLetterEntry":
        return cls(
            newsletter_issue_id=UUID(str(row["newsletter_issue_id"])),
            subscriber_email=row["subscriber_email"],
            n_retries=int(row["n_retries"]),
            reason=row["reason"],
            last_error=row.get("last_error"),
            abandoned_at=row["abandoned_at"],
        )
