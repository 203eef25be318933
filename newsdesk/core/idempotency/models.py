"""
Idempotency Models
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import ValidationError

MAX_KEY_LENGTH = 50


@dataclass(frozen=True)
class IdempotencyKey:
    """Client-supplied token scoping one logical publish operation."""

    value: str

    @classmethod
    def parse(cls, raw: Optional[str]) -> "IdempotencyKey":
        if raw is None or not raw.strip():
            raise ValidationError("The idempotency key cannot be empty", field="idempotency_key")
        if len(raw) > MAX_KEY_LENGTH:
            raise ValidationError(
                f"The idempotency key must be at most {MAX_KEY_LENGTH} characters long",
                field="idempotency_key"
            )
        return cls(raw)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class HttpOutcome:
    """
    The exact HTTP-level outcome of a request: status, ordered headers, body.

    Saved verbatim by the ledger and replayed byte-for-byte.
    """

    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def headers_json(self) -> str:
        return json.dumps([[name, value] for name, value in self.headers])

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "HttpOutcome":
        raw_headers = row["response_headers"]
        if isinstance(raw_headers, (bytes, str)):
            raw_headers = json.loads(raw_headers)
        return cls(
            status_code=int(row["response_status_code"]),
            headers=[(name, value) for name, value in (raw_headers or [])],
            body=bytes(row["response_body"] or b""),
        )


# The ledger stores an HttpOutcome; the name reads better at lookup sites
SavedResponse = HttpOutcome


@dataclass(frozen=True)
class Reserved:
    """The key was free and now belongs to the current transaction."""


@dataclass(frozen=True)
class AlreadyExists:
    """
    The key was already used.

    saved_response is None when the owner has not stored its outcome,
    which the publish flow treats as a request still in flight.
    """

    saved_response: Optional[SavedResponse] = None


ReservationResult = Union[Reserved, AlreadyExists]
