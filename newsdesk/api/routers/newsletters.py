"""
Newsletter Publishing API
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Response
from pydantic import BaseModel

from ...core.auth import Operator
from ...core.newsletters import PublishCoordinator
from ..dependencies import get_publish_coordinator
from ..shared.middleware import require_operator

router = APIRouter(prefix="/admin", tags=["newsletters"])


class NewsletterContent(BaseModel):
    html: str
    text: str


class PublishNewsletterRequest(BaseModel):
    """Request body for publishing an issue."""
    title: str
    content: NewsletterContent


@router.post("/newsletters", status_code=202)
async def publish_newsletter(
    body: PublishNewsletterRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    operator: Operator = Depends(require_operator),
    coordinator: PublishCoordinator = Depends(get_publish_coordinator),
) -> Response:
    """
    Publish an issue to every confirmed subscriber.

    Retries carrying the same Idempotency-Key receive the original response
    unchanged; emails are sent asynchronously by the delivery workers.
    """
    outcome = await coordinator.publish(
        operator.id,
        idempotency_key,
        body.title,
        body.content.html,
        body.content.text,
    )
    response = Response(content=outcome.body, status_code=outcome.status_code)
    # Saved headers are an ordered list and may repeat a name
    for name, value in outcome.headers:
        response.headers.append(name, value)
    return response
