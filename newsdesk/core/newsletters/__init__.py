"""
Newsletter publishing.

Usage:
    from newsdesk.core.newsletters import PublishCoordinator

    outcome = await PublishCoordinator(db).publish(
        operator_id, idempotency_key, title, html_body, text_body
    )
"""

from .models import NewsletterIssue
from .publisher import PublishCoordinator, accepted_outcome
from .subscribers import add_subscriber, list_confirmed_subscriber_emails

__all__ = [
    "NewsletterIssue",
    "PublishCoordinator",
    "accepted_outcome",
    "add_subscriber",
    "list_confirmed_subscriber_emails",
]
