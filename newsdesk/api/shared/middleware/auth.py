"""
Authentication

Resolves the operator behind a request from HTTP Basic credentials. With
AUTH_REQUIRED=false every request runs as a fixed development operator.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ....core.auth import Operator, authenticate_operator
from ..exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

DEV_OPERATOR_ID = UUID("00000000-0000-0000-0000-000000000001")

basic_auth = HTTPBasic(auto_error=False, realm="publish")


def _create_dev_operator() -> Operator:
    """Create a mock operator for development mode."""
    return Operator(
        id=DEV_OPERATOR_ID,
        username="dev",
        is_active=True,
        created_at=datetime.now(timezone.utc)
    )


async def require_operator(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(basic_auth),
) -> Operator:
    """
    Require authentication and return the operator.

    Raises:
        UnauthorizedError: missing or invalid credentials
    """
    settings = request.app.state.settings
    if not settings.AUTH_REQUIRED:
        return _create_dev_operator()

    if credentials is None:
        raise UnauthorizedError("Missing credentials")

    operator = await authenticate_operator(
        credentials.username,
        credentials.password,
        db=request.app.state.db
    )
    if operator is None:
        logger.info(f"Authentication failed for {credentials.username}")
        raise UnauthorizedError("Invalid credentials")

    return operator
