"""
Delivery Administration API

Queue depth and dead-letter management for operators.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ...core.auth import Operator
from ...core.outbox import DeadLetterManager
from ..dependencies import get_dead_letter_manager
from ..shared.middleware import require_operator

router = APIRouter(prefix="/admin/deliveries", tags=["deliveries"])


class RequeueRequest(BaseModel):
    """Request to requeue dead-lettered deliveries of an issue."""
    newsletter_issue_id: UUID
    subscriber_email: Optional[str] = None


@router.get("/stats")
async def delivery_stats(
    operator: Operator = Depends(require_operator),
    manager: DeadLetterManager = Depends(get_dead_letter_manager),
):
    """Pending tasks, tasks due now, and dead letters."""
    return await manager.queue_stats()


@router.get("/dead-letters")
async def list_dead_letters(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    newsletter_issue_id: Optional[UUID] = None,
    operator: Operator = Depends(require_operator),
    manager: DeadLetterManager = Depends(get_dead_letter_manager),
):
    """List abandoned deliveries."""
    entries = await manager.list_entries(
        limit=limit,
        offset=offset,
        newsletter_issue_id=newsletter_issue_id
    )
    total = await manager.count(newsletter_issue_id)

    return {
        "entries": [e.to_dict() for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset
    }


@router.post("/dead-letters/requeue")
async def requeue_dead_letters(
    body: RequeueRequest,
    operator: Operator = Depends(require_operator),
    manager: DeadLetterManager = Depends(get_dead_letter_manager),
):
    """Move dead letters back into the live queue with a fresh retry budget."""
    requeued = await manager.requeue(
        body.newsletter_issue_id,
        subscriber_email=body.subscriber_email,
        operator_id=operator.id
    )
    return {
        "newsletter_issue_id": str(body.newsletter_issue_id),
        "requeued": requeued
    }
