"""
Newsletter Models
"""

from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class NewsletterIssue(BaseModel):
    """A published newsletter issue. Immutable once written."""

    newsletter_issue_id: UUID = Field(default_factory=uuid4)
    title: str
    text_content: str
    html_content: str
    published_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NewsletterIssue":
        return cls(
            newsletter_issue_id=UUID(str(row["newsletter_issue_id"])),
            title=row["title"],
            text_content=row["text_content"],
            html_content=row["html_content"],
            published_at=row["published_at"],
        )
