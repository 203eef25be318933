"""
Standard API Response Models

Error envelope shared by every endpoint:

    {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Human-readable error message",
            "details": [...],
            "trace_id": "abc-123"
        }
    }
"""

from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ...core.observability import get_trace_id


def current_trace_id() -> str:
    """Trace id of the active span, or a fresh id outside of tracing."""
    return get_trace_id() or str(uuid4())


class ErrorDetail(BaseModel):
    """Detailed error information for validation errors."""

    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorBody(BaseModel):
    """Error body with code, message, and details."""

    code: str
    message: str
    details: Optional[List[ErrorDetail]] = None
    trace_id: str = Field(default_factory=current_trace_id)

    def envelope(self) -> dict:
        return {"error": self.model_dump(mode="json")}
