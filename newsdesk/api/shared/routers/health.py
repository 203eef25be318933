"""
Health Check Endpoints
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from ....core.database import DatabaseAdapter
from ....core.errors import StoreError
from ...dependencies import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    request: Request,
    response: Response,
    db: DatabaseAdapter = Depends(get_db),
) -> Dict[str, Any]:
    """
    Liveness plus a database probe.

    Returns 503 when the database cannot be reached.
    """
    checks = {}
    healthy = True

    try:
        await db.fetchval("SELECT 1")
        checks["database"] = "healthy"
    except StoreError as e:
        checks["database"] = f"unhealthy: {str(e)[:100]}"
        healthy = False

    workers = request.app.state.delivery_workers
    checks["delivery_workers"] = sum(1 for worker in workers if worker.is_running)

    if not healthy:
        response.status_code = 503

    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks
    }
